import logging
import os
import signal
import subprocess
import threading
from typing import Callable, Dict, List, Optional

from lambdawatch import config
from lambdawatch.utils.functions import call_safe
from lambdawatch.utils.run import kill_process_tree, run
from lambdawatch.utils.strings import to_str
from lambdawatch.utils.threads import FuncThread, start_worker_thread

LOG = logging.getLogger(__name__)

OUTPUT_LOG = logging.getLogger("lambdawatch.functions.output")


class FunctionProcess:
    """
    A function instance running as a child process. The output of the process is forwarded line by line to the
    ``lambdawatch.functions.output`` logger, and ``on_exit`` is called with the process and its exit code once
    the process terminates, regardless of why.
    """

    function_name: str
    command: List[str]
    environment: Dict[str, str]
    generation: int

    def __init__(
        self,
        function_name: str,
        command: List[str],
        environment: Dict[str, str] = None,
        cwd: str = None,
        generation: int = 0,
        on_exit: Callable[["FunctionProcess", int], None] = None,
        grace_period: float = None,
    ):
        self.function_name = function_name
        self.command = command
        self.environment = environment or {}
        self.cwd = cwd
        self.generation = generation
        self.on_exit = on_exit
        self.grace_period = (
            config.LAMBDA_SHUTDOWN_GRACE_PERIOD if grace_period is None else grace_period
        )

        self._process: Optional[subprocess.Popen] = None
        self._monitor: Optional[FuncThread] = None
        self._exited = threading.Event()
        self._stop_lock = threading.Lock()

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process else None

    @property
    def is_alive(self) -> bool:
        return self._process is not None and not self._exited.is_set()

    def start(self) -> None:
        """
        Spawns the process in its own session.

        :raises OSError: if the command cannot be executed
        """
        if self._process:
            raise RuntimeError(f"process of function {self.function_name} was already started")

        self._process = run(
            self.command,
            asynchronous=True,
            outfile=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env_vars=self.environment,
            cwd=self.cwd,
        )
        LOG.debug(
            "Started process %s for function %s: %s", self.pid, self.function_name, self.command
        )
        self._monitor = start_worker_thread(self._monitor_process, name=f"fn-{self.function_name}")

    def _monitor_process(self, *_):
        process = self._process
        for line in iter(process.stdout.readline, b""):
            OUTPUT_LOG.info(
                to_str(line, errors="replace").rstrip(),
                extra={"function_name": self.function_name},
            )
        returncode = process.wait()
        process.stdout.close()
        self._exited.set()
        LOG.debug(
            "Process %s of function %s exited with code %s", process.pid, self.function_name, returncode
        )
        if self.on_exit:
            call_safe(
                self.on_exit,
                args=(self, returncode),
                exception_message=f"error handling exit of function {self.function_name}",
            )

    def wait(self, timeout: float = None) -> bool:
        """Waits for the process to exit and its output to be drained. Returns False on timeout."""
        return self._exited.wait(timeout)

    def stop(self) -> None:
        """
        Requests the process to shut down (SIGTERM), and kills the whole process tree if it is still running
        after the grace period.
        """
        with self._stop_lock:
            process = self._process
            if not process or process.poll() is not None:
                return

            LOG.debug("Stopping process %s of function %s", process.pid, self.function_name)
            try:
                if hasattr(os, "killpg"):
                    # the process leads its own session, signal everything it spawned as well
                    os.killpg(process.pid, signal.SIGTERM)
                else:
                    process.terminate()
            except ProcessLookupError:
                return

            try:
                process.wait(timeout=self.grace_period)
                return
            except subprocess.TimeoutExpired:
                LOG.warning(
                    "Process %s of function %s did not exit within %s seconds, killing it",
                    process.pid,
                    self.function_name,
                    self.grace_period,
                )

            try:
                kill_process_tree(process.pid)
            except Exception as e:
                LOG.debug("Unable to kill process tree of %s: %s", process.pid, e)
            process.wait()

    def __repr__(self):
        return f"FunctionProcess({self.function_name}, pid={self.pid}, generation={self.generation})"
