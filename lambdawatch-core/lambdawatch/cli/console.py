from rich.console import Console

BANNER = r"""
  _                 _         _                    _       _
 | | __ _ _ __ ___ | |__   __| | __ ___      ____ _| |_ ___| |__
 | |/ _` | '_ ` _ \| '_ \ / _` |/ _` \ \ /\ / / _` | __/ __| '_ \
 | | (_| | | | | | | |_) | (_| | (_| |\ V  V / (_| | || (__| | | |
 |_|\__,_|_| |_| |_|_.__/ \__,_|\__,_| \_/\_/ \__,_|\__\___|_| |_|
"""

console = Console()
