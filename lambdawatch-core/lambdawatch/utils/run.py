import logging
import os
import subprocess
import sys
from typing import AnyStr, Dict, List, Optional, Union

from lambdawatch.constants import DEFAULT_ENCODING

LOG = logging.getLogger(__name__)


def run(
    cmd: Union[str, List[str]],
    print_error=True,
    asynchronous=False,
    stdin=False,
    stderr=subprocess.STDOUT,
    outfile=None,
    env_vars: Optional[Dict[AnyStr, AnyStr]] = None,
    inherit_env=True,
    shell=True,
    cwd: str = None,
) -> Union[str, subprocess.Popen]:
    LOG.debug("Executing command: %s", cmd)
    env_dict = os.environ.copy() if inherit_env else {}
    if env_vars:
        env_dict.update(env_vars)
    env_dict = {k: to_str(str(v)) for k, v in env_dict.items()}

    if isinstance(cmd, list):
        # a list is passed to the process as argv, never through the shell
        shell = False

    try:
        if not asynchronous:
            if stdin:
                return subprocess.check_output(
                    cmd, shell=shell, stderr=stderr, env=env_dict, stdin=subprocess.PIPE, cwd=cwd
                )
            output = subprocess.check_output(cmd, shell=shell, stderr=stderr, env=env_dict, cwd=cwd)
            return output.decode(DEFAULT_ENCODING)

        stdin_arg = subprocess.PIPE if stdin else subprocess.DEVNULL
        stdout_arg = open(outfile, "ab") if isinstance(outfile, str) else outfile

        # start the actual sub process in its own session, so its whole tree can be signalled
        kwargs = {}
        if sys.platform != "win32":
            kwargs["start_new_session"] = True
        process = subprocess.Popen(
            cmd,
            shell=shell,
            stdin=stdin_arg,
            bufsize=-1,
            stderr=stderr,
            stdout=stdout_arg,
            env=env_dict,
            cwd=cwd,
            **kwargs,
        )
        return process
    except subprocess.CalledProcessError as e:
        if print_error:
            LOG.error("'%s': exit code %s; output: %s", cmd, e.returncode, to_str(e.output or b""))
        raise e


def is_command_available(cmd: str) -> bool:
    try:
        run(["which", cmd], print_error=False)
        return True
    except Exception:
        return False


def kill_process_tree(parent_pid):
    import psutil

    parent_pid = getattr(parent_pid, "pid", None) or parent_pid
    parent = psutil.Process(parent_pid)
    for child in parent.children(recursive=True):
        try:
            child.kill()
        except psutil.Error:
            pass
    parent.kill()


def to_str(obj: Union[str, bytes], errors="strict"):
    return obj.decode(DEFAULT_ENCODING, errors) if isinstance(obj, bytes) else obj
