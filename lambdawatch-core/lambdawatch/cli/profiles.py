import argparse
import os
import sys
from typing import Optional

# important: this needs to be free of lambdawatch imports


def set_and_remove_profile_from_sys_argv():
    """
    Parses the ``--profile`` flag (or the first ``-p`` flag) from the command line and sets ``CONFIG_PROFILE``
    accordingly, so ``lambdawatch.config`` picks it up when it is imported. All ``--profile`` options are
    REMOVED from sys.argv, so the profile can be given at any point on the command line.
    """
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--profile")
    namespace, sys.argv = parser.parse_known_args(sys.argv)
    profile = namespace.profile

    if not profile:
        # if no profile is given, check for the -p argument
        profile = parse_p_argument(sys.argv)

    if profile:
        os.environ["CONFIG_PROFILE"] = profile.strip()


def parse_p_argument(args) -> Optional[str]:
    """
    Lightweight arg parsing to find the first occurrence of ``-p <config>``, or ``-p=<config>`` and return the value of
    ``<config>`` from the given arguments.

    :param args: list of CLI arguments
    :returns: the value of ``-p``.
    """
    for i, current_arg in enumerate(args):
        if current_arg.startswith("-p="):
            # if using the "<arg>=<value>" notation, we remove the "-p=" prefix to get the value
            return current_arg[3:]
        if current_arg == "-p":
            # otherwise use the next arg in the args list as value
            try:
                return args[i + 1]
            except IndexError:
                return None

    return None
