import dataclasses
import json
import threading
import time
from concurrent.futures import Future
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from lambdawatch.utils.strings import long_uid, to_bytes, to_str


class FunctionState(Enum):
    UNBUILT = "Unbuilt"
    BUILDING = "Building"
    STARTING = "Starting"
    READY = "Ready"
    INVOKING = "Invoking"
    CRASHED = "Crashed"
    REBUILDING = "Rebuilding"

    def __str__(self):
        return self.value

    def __repr__(self):
        return self.value


@dataclasses.dataclass
class FunctionSource:
    """Everything discovery knows about one function of the workspace."""

    name: str
    root: str
    """Directory of the package the function belongs to, used as working directory of the process."""
    manifest_path: str
    watch_paths: List[str] = dataclasses.field(default_factory=list)
    """The function's own source tree: changes below these paths only affect this function."""
    environment: Dict[str, str] = dataclasses.field(default_factory=dict)
    package: Optional[str] = None
    target_directory: Optional[str] = None


@dataclasses.dataclass
class Artifact:
    path: str
    launcher: List[str] = dataclasses.field(default_factory=list)
    """Optional interpreter the artifact is run with (empty for native binaries)."""

    @property
    def command(self) -> List[str]:
        return [*self.launcher, self.path]


@dataclasses.dataclass
class ErrorInfo:
    error_type: str
    error_message: str = ""
    stack_trace: List[str] = dataclasses.field(default_factory=list)

    def to_dict(self) -> dict:
        result = {"errorType": self.error_type, "errorMessage": self.error_message}
        if self.stack_trace:
            result["stackTrace"] = self.stack_trace
        return result

    @classmethod
    def from_payload(cls, payload: bytes, error_type: str = None) -> "ErrorInfo":
        """
        Parses the error document a function process sends. Documents that are not JSON objects are kept
        verbatim as the message.
        """
        default_type = error_type or "Unhandled"
        try:
            doc = json.loads(to_str(payload or b"{}", errors="replace"))
        except ValueError:
            return cls(error_type=default_type, error_message=to_str(payload, errors="replace"))
        if not isinstance(doc, dict):
            return cls(error_type=default_type, error_message=json.dumps(doc))

        stack_trace = doc.get("stackTrace") or []
        if isinstance(stack_trace, str):
            stack_trace = stack_trace.splitlines()
        return cls(
            error_type=str(doc.get("errorType") or default_type),
            error_message=str(doc.get("errorMessage") or ""),
            stack_trace=[str(line) for line in stack_trace],
        )


@dataclasses.dataclass
class InvocationResult:
    payload: Optional[bytes] = None
    error: Optional[ErrorInfo] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclasses.dataclass(frozen=True)
class ExecutionHandle:
    """Proof that a function process of a particular generation was ready to take invocations."""

    function_name: str
    generation: int
    pid: Optional[int] = None


def generate_trace_id(now: float = None) -> str:
    now = now or time.time()
    return f"Root=1-{int(now):08x}-{long_uid().replace('-', '')[:24]};Sampled=0"


class Invocation:
    """
    One invoke request. The response slot is fulfilled exactly once, either with an ``InvocationResult``
    (success or function error) or with a ``LambdaWatchError`` raised by the tool itself. Later attempts to
    fulfill it are ignored and reported as ``False``.
    """

    request_id: str
    function_name: str
    payload: bytes
    enqueued_at: float
    timeout: Optional[float]
    trace_id: str

    def __init__(
        self,
        function_name: str,
        payload: Union[str, bytes, None],
        timeout: float = None,
        request_id: str = None,
        trace_id: str = None,
    ):
        self.request_id = request_id or long_uid()
        self.function_name = function_name
        self.payload = to_bytes(payload or b"")
        self.enqueued_at = time.time()
        self.timeout = timeout
        self.trace_id = trace_id or generate_trace_id(self.enqueued_at)
        self._future: Future = Future()
        self._lock = threading.Lock()

    @property
    def deadline(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return self.enqueued_at + self.timeout

    @property
    def deadline_ms(self) -> int:
        deadline = self.deadline
        if deadline is None:
            # no deadline is communicated as "far in the future", as the runtime API always sends one
            deadline = self.enqueued_at + 24 * 60 * 60
        return int(deadline * 1000)

    def succeed(self, payload: Union[str, bytes, None]) -> bool:
        return self._set_result(InvocationResult(payload=to_bytes(payload or b"")))

    def fail_function(self, error: ErrorInfo) -> bool:
        """Fulfills the slot with an error reported by the function itself."""
        return self._set_result(InvocationResult(error=error))

    def fail(self, exception: Exception) -> bool:
        """Fulfills the slot with an error of the tool (timeout, crash, ...)."""
        with self._lock:
            if self._future.done():
                return False
            self._future.set_exception(exception)
            return True

    def _set_result(self, result: InvocationResult) -> bool:
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(result)
            return True

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float = None) -> InvocationResult:
        """
        Waits for the slot to be fulfilled.

        :raises LambdaWatchError: if the tool failed the invocation
        :raises concurrent.futures.TimeoutError: if ``timeout`` elapsed first
        """
        return self._future.result(timeout)

    def exception(self, timeout: float = None) -> Optional[BaseException]:
        return self._future.exception(timeout)

    def add_done_callback(self, fn: Callable[["Invocation"], None]) -> None:
        self._future.add_done_callback(lambda _: fn(self))

    def __repr__(self):
        return f"Invocation({self.function_name}, {self.request_id})"
