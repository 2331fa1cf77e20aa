"""
The function registry owns every function entry of the workspace, drives their lifecycle (build, start,
crash, rebuild), and is the only component that mutates the per-function invocation channels.
"""

import logging
import os
import threading
from concurrent.futures import Future
from typing import Dict, List, Optional

from lambdawatch import config, constants
from lambdawatch.functions.build import Builder, CargoBuilder
from lambdawatch.functions.channel import InvocationChannel
from lambdawatch.functions.discovery import Workspace
from lambdawatch.functions.exceptions import (
    CompileError,
    DiscoveryError,
    FunctionCrashed,
    FunctionUnavailable,
    InitializationError,
    StartupTimeout,
    UnknownFunction,
    UnknownInvocationId,
)
from lambdawatch.functions.models import (
    Artifact,
    ErrorInfo,
    ExecutionHandle,
    FunctionSource,
    FunctionState,
    Invocation,
)
from lambdawatch.functions.process import FunctionProcess
from lambdawatch.utils.files import fingerprint
from lambdawatch.utils.threads import parallelize, start_worker_thread

LOG = logging.getLogger(__name__)


class FunctionEntry:
    """
    The state of one function. All attributes are guarded by ``lock``; ``state_changed`` is notified on every
    state transition.
    """

    name: str
    source: FunctionSource
    state: FunctionState
    generation: int
    stale: bool
    crash_count: int
    last_error: Optional[Exception]
    process: Optional[FunctionProcess]
    channel: Optional[InvocationChannel]
    fingerprint: Optional[str]
    artifact: Optional[Artifact]

    def __init__(self, source: FunctionSource, state: FunctionState = FunctionState.UNBUILT):
        self.name = source.name
        self.source = source
        self.lock = threading.RLock()
        self.state_changed = threading.Condition(self.lock)
        self.state = state
        self.generation = 0
        self.stale = False
        self.crash_count = 0
        self.last_error = None
        self.process = None
        self.channel = None
        self.fingerprint = None
        self.artifact = None

    def set_state(self, state: FunctionState) -> None:
        with self.lock:
            if self.state == state:
                return
            LOG.debug("Function %s: %s -> %s", self.name, self.state, state)
            self.state = state
            self.state_changed.notify_all()

    def handle(self) -> ExecutionHandle:
        return ExecutionHandle(
            function_name=self.name,
            generation=self.generation,
            pid=self.process.pid if self.process else None,
        )

    def describe(self) -> dict:
        with self.lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "stale": self.stale,
                "crashes": self.crash_count,
                "pid": self.process.pid if self.process else None,
                "queued": len(self.channel) if self.channel is not None else 0,
                "error": str(self.last_error) if self.last_error else None,
            }

    def __repr__(self):
        return f"FunctionEntry({self.name}, {self.state}, generation={self.generation})"


class FunctionRegistry:
    """
    Registry of all functions of a workspace. Operations on one function are mutually exclusive, operations on
    different functions run in parallel: the registry-wide mutex is only held to look up or replace entries.
    """

    workspace: Workspace
    builder: Builder

    def __init__(
        self,
        workspace: Workspace,
        builder: Builder = None,
        runtime_api_address: str = None,
        build_target: str = None,
        build_profile: str = None,
        startup_timeout: float = None,
        retry_budget: int = None,
        grace_period: float = None,
        settle_timeout: float = None,
    ):
        self.workspace = workspace
        self.builder = builder or CargoBuilder()
        self.runtime_api_address = runtime_api_address or config.runtime_api_address()
        self.build_target = build_target if build_target is not None else config.LAMBDA_BUILD_TARGET
        self.build_profile = build_profile or config.LAMBDA_BUILD_PROFILE
        self.startup_timeout = (
            config.LAMBDA_STARTUP_TIMEOUT if startup_timeout is None else startup_timeout
        )
        self.retry_budget = config.LAMBDA_STARTUP_RETRIES if retry_budget is None else retry_budget
        self.grace_period = (
            config.LAMBDA_SHUTDOWN_GRACE_PERIOD if grace_period is None else grace_period
        )
        self.settle_timeout = settle_timeout
        self.fingerprint_ignore = list(constants.DEFAULT_WATCH_IGNORE) + list(
            config.LAMBDA_WATCH_IGNORE
        )

        self._mutex = threading.RLock()
        self._sources: Dict[str, FunctionSource] = {}
        self._entries: Dict[str, FunctionEntry] = {}
        self._startups: Dict[str, Future] = {}
        self._shutting_down = threading.Event()

    # discovery and lookup

    def discover(self) -> List[FunctionSource]:
        """
        Reads the functions of the workspace and creates an entry for every function that does not have one yet.
        """
        sources = self.workspace.discover()
        with self._mutex:
            self._sources = {source.name: source for source in sources}
            for source in sources:
                if source.name not in self._entries:
                    self._entries[source.name] = FunctionEntry(source)
        return sources

    def sources(self) -> List[FunctionSource]:
        with self._mutex:
            return list(self._sources.values())

    def names(self) -> List[str]:
        with self._mutex:
            return sorted(self._entries.keys())

    def get(self, name: str) -> FunctionEntry:
        """
        Returns the current entry of the given function without triggering discovery.

        :raises UnknownFunction: if there is no such entry
        """
        with self._mutex:
            entry = self._entries.get(name)
        if entry is None:
            raise UnknownFunction(name)
        return entry

    def resolve(self, name: str) -> FunctionEntry:
        """
        Returns the entry of the given function, creating it on first reference. An unknown name triggers one
        re-discovery of the workspace, so functions added while the tool runs are found.

        :raises UnknownFunction: if the workspace has no function with this name
        """
        with self._mutex:
            entry = self._entries.get(name)
            if entry is not None:
                return entry
            source = self._sources.get(name)

        if source is None:
            LOG.debug("Function %s not known yet, discovering workspace again", name)
            try:
                self.discover()
            except DiscoveryError as e:
                LOG.warning("Unable to discover functions: %s", e)
            with self._mutex:
                source = self._sources.get(name)

        if source is None:
            raise UnknownFunction(name)

        with self._mutex:
            return self._entries.setdefault(name, FunctionEntry(source))

    # lifecycle

    def ensure_ready(self, name: str) -> ExecutionHandle:
        """
        Makes sure a process of the given function is running and has contacted the runtime API, building and
        starting it if necessary. Blocks until the process is ready, or the startup failed. Callers that arrive
        while a build or startup of the function is in progress wait for it and share its outcome.

        :raises UnknownFunction: if the function does not exist
        :raises CompileError: if the build failed
        :raises StartupTimeout: if the process did not contact the runtime API in time
        :raises InitializationError: if the process failed during its initialization
        :raises FunctionUnavailable: if the function crashed too often, or the registry is shutting down
        """
        self._check_running()
        self.resolve(name)

        with self._mutex:
            startup = self._startups.get(name)
            owner = startup is None
            if owner:
                startup = self._startups[name] = Future()

        if not owner:
            LOG.debug("Waiting for the ongoing startup of function %s", name)
            return startup.result()

        try:
            handle = self._prepare(name)
        except BaseException as e:
            startup.set_exception(e)
            raise
        else:
            startup.set_result(handle)
            return handle
        finally:
            with self._mutex:
                self._startups.pop(name, None)

    def _prepare(self, name: str) -> ExecutionHandle:
        self._check_running()
        entry = self.get(name)

        if entry.stale:
            entry = self._recreate(entry)

        with entry.lock:
            process = entry.process
            vanished = entry.state in (FunctionState.READY, FunctionState.INVOKING)
            if vanished and process and process.is_alive:
                return entry.handle()

        if vanished:
            # the process exited, but its exit was not handled yet
            returncode = process.returncode if process else None
            self._crash(
                entry,
                process,
                FunctionCrashed(f"Function {name} exited unexpectedly with code {returncode}"),
            )

        with entry.lock:
            if entry.state == FunctionState.CRASHED:
                if entry.crash_count >= self.retry_budget:
                    raise FunctionUnavailable(
                        f"Function {name} crashed {entry.crash_count} times in a row, "
                        f"fix the function to trigger a rebuild",
                        cause=entry.last_error,
                    )
                LOG.info(
                    "Restarting crashed function %s (attempt %s of %s)",
                    name,
                    entry.crash_count + 1,
                    self.retry_budget,
                )

            needs_build = (
                entry.state in (FunctionState.UNBUILT, FunctionState.REBUILDING)
                or entry.artifact is None
            )

        if needs_build:
            self._build(entry)

        return self._start(entry)

    def _check_running(self):
        if self._shutting_down.is_set():
            raise FunctionUnavailable("lambdawatch is shutting down")

    def _fingerprint(self, entry: FunctionEntry) -> Optional[str]:
        try:
            return fingerprint([self.workspace.root], self.fingerprint_ignore)
        except OSError as e:
            LOG.debug("Unable to fingerprint sources of %s: %s", entry.name, e)
            return None

    def _build(self, entry: FunctionEntry) -> None:
        entry.set_state(FunctionState.BUILDING)

        current = self._fingerprint(entry)
        if (
            current
            and entry.artifact
            and current == entry.fingerprint
            and os.path.exists(entry.artifact.path)
        ):
            LOG.info("Sources of function %s are unchanged, reusing %s", entry.name, entry.artifact.path)
            return

        LOG.info("Building function %s", entry.name)
        try:
            artifact = self.builder.build(entry.source, self.build_target, self.build_profile)
        except CompileError as e:
            LOG.error("%s", e)
            with entry.lock:
                entry.last_error = e
                entry.set_state(FunctionState.UNBUILT)
            raise
        except Exception as e:
            error = CompileError(f"Failed to build function {entry.name}: {e}")
            with entry.lock:
                entry.last_error = error
                entry.set_state(FunctionState.UNBUILT)
            raise error from e

        with entry.lock:
            entry.artifact = artifact
            entry.fingerprint = current
        LOG.info("Built function %s: %s", entry.name, artifact.path)

    def _environment(self, entry: FunctionEntry) -> Dict[str, str]:
        environment = dict(entry.source.environment)
        environment.update(
            {
                "AWS_LAMBDA_RUNTIME_API": f"{self.runtime_api_address}/{entry.name}",
                "AWS_LAMBDA_FUNCTION_NAME": entry.name,
                "AWS_LAMBDA_FUNCTION_VERSION": "1",
                "AWS_LAMBDA_FUNCTION_MEMORY_SIZE": str(config.LAMBDA_FUNCTION_MEMORY_SIZE),
                "AWS_LAMBDA_LOG_GROUP_NAME": f"/aws/lambda/{entry.name}",
                "AWS_LAMBDA_LOG_STREAM_NAME": f"lambdawatch/{entry.generation}",
                "AWS_REGION": config.LAMBDA_DEFAULT_REGION,
            }
        )
        environment.setdefault("RUST_LOG", os.environ.get("RUST_LOG", "info"))
        return environment

    def _start(self, entry: FunctionEntry) -> ExecutionHandle:
        with entry.lock:
            entry.generation += 1
            entry.channel = InvocationChannel(entry.name)
            process = FunctionProcess(
                entry.name,
                entry.artifact.command,
                environment=self._environment(entry),
                cwd=entry.source.root,
                generation=entry.generation,
                on_exit=self._on_process_exit,
                grace_period=self.grace_period,
            )
            entry.process = process
            entry.set_state(FunctionState.STARTING)

        LOG.info("Starting function %s", entry.name)
        try:
            process.start()
        except OSError as e:
            error = InitializationError(f"Unable to start function {entry.name}: {e}")
            self._crash(entry, process, error)
            raise error from e

        with entry.lock:
            started = entry.state_changed.wait_for(
                lambda: entry.state != FunctionState.STARTING, timeout=self.startup_timeout
            )
            if started and entry.state != FunctionState.CRASHED:
                LOG.info("Function %s is ready (pid %s)", entry.name, process.pid)
                return entry.handle()
            if started:
                raise entry.last_error

        error = StartupTimeout(
            f"Function {entry.name} did not contact the runtime API within {self.startup_timeout} seconds"
        )
        self._crash(entry, process, error)
        process.stop()
        raise error

    def _crash(self, entry: FunctionEntry, process: Optional[FunctionProcess], error: Exception) -> bool:
        """
        Marks the entry as crashed and fails every invocation it still holds. Does nothing if the given process
        is no longer the one owned by the entry.
        """
        with entry.lock:
            if process is not None and entry.process is not process:
                return False
            entry.process = None
            entry.crash_count += 1
            entry.last_error = error
            entry.set_state(FunctionState.CRASHED)
            pending = entry.channel.close() if entry.channel is not None else []

        LOG.warning("Function %s crashed: %s", entry.name, error)
        for invocation in pending:
            invocation.fail(error)
        return True

    def _on_process_exit(self, process: FunctionProcess, returncode: int) -> None:
        with self._mutex:
            entry = self._entries.get(process.function_name)
        if entry is None:
            return

        with entry.lock:
            if entry.process is not process:
                LOG.debug("Process %s of %s exited after being replaced", process.pid, entry.name)
                return
            if entry.state == FunctionState.STARTING:
                error = InitializationError(
                    f"Function {entry.name} exited with code {returncode} before contacting the runtime API"
                )
            else:
                error = FunctionCrashed(f"Function {entry.name} exited unexpectedly with code {returncode}")

        self._crash(entry, process, error)

    def _recreate(self, entry: FunctionEntry) -> FunctionEntry:
        """
        Replaces a stale entry with a fresh one that gets rebuilt. Invocations already queued for the old process
        are served first, so the process is never interrupted in the middle of an invocation.
        """
        LOG.info("Function %s changed, rebuilding", entry.name)
        channel = entry.channel
        if channel is not None and not channel.wait_settled(self.settle_timeout):
            LOG.warning("Function %s did not finish its invocations, stopping it anyway", entry.name)

        with entry.lock:
            process = entry.process
            entry.process = None
            pending = channel.close() if channel is not None else []

        for invocation in pending:
            invocation.fail(FunctionUnavailable(f"Function {entry.name} is being rebuilt"))
        if process:
            process.stop()

        with self._mutex:
            source = self._sources.get(entry.name, entry.source)

        fresh = FunctionEntry(source, state=FunctionState.REBUILDING)
        fresh.generation = entry.generation
        fresh.fingerprint = entry.fingerprint
        fresh.artifact = entry.artifact

        with self._mutex:
            self._entries[entry.name] = fresh
        return fresh

    def invalidate(self, name: str) -> bool:
        """
        Marks the given function for a rebuild. A running process keeps serving what was already queued; the next
        ``ensure_ready`` tears it down and rebuilds.

        :return: True if the function was marked stale, False if it is unknown or was never built
        """
        with self._mutex:
            entry = self._entries.get(name)
        if entry is None:
            return False

        with entry.lock:
            if entry.state == FunctionState.UNBUILT and entry.artifact is None:
                return False
            if entry.stale:
                return True
            entry.stale = True

        LOG.info("Function %s changed, rebuilding on next invocation", name)
        return True

    def invalidate_all(self) -> List[str]:
        return [name for name in self.names() if self.invalidate(name)]

    # invocation queueing

    def enqueue(self, handle: ExecutionHandle, invocation: Invocation) -> None:
        """
        Appends the invocation to the queue of the process identified by the handle.

        :raises FunctionUnavailable: if that process is not running anymore
        """
        entry = self.get(handle.function_name)
        with entry.lock:
            if (
                entry.generation != handle.generation
                or entry.channel is None
                or entry.state not in (FunctionState.READY, FunctionState.INVOKING)
            ):
                raise FunctionUnavailable(
                    f"Function {entry.name} is not ready anymore ({entry.state})", cause=entry.last_error
                )
            entry.channel.put(invocation)
        LOG.debug("Queued invocation %s for function %s", invocation.request_id, entry.name)

    # runtime API callbacks

    def next_invocation(self, name: str) -> Optional[Invocation]:
        """
        Called when the process of the function polls for work. The first poll marks the process as ready.
        Blocks until an invocation is available.

        :return: the invocation to hand out, or None if the function does not accept work anymore
        :raises UnknownFunction: if there is no such function
        """
        entry = self.get(name)
        with entry.lock:
            channel = entry.channel
            if channel is None or entry.state == FunctionState.CRASHED:
                return None
            if entry.state == FunctionState.STARTING:
                entry.set_state(FunctionState.READY)

        invocation = channel.take()
        if invocation is None:
            return None

        with entry.lock:
            if entry.channel is channel and entry.state == FunctionState.READY:
                entry.set_state(FunctionState.INVOKING)
        LOG.debug("Handing out invocation %s to function %s", invocation.request_id, name)
        return invocation

    def _complete(self, name: str, request_id: str) -> Invocation:
        entry = self.get(name)
        with entry.lock:
            channel = entry.channel
        if channel is None:
            raise UnknownInvocationId(name, request_id)

        invocation = channel.complete(request_id)
        with entry.lock:
            if entry.channel is channel:
                entry.crash_count = 0
                if entry.state == FunctionState.INVOKING:
                    entry.set_state(FunctionState.READY)
        return invocation

    def submit_response(self, name: str, request_id: str, payload: bytes) -> None:
        """
        :raises UnknownInvocationId: if the id is not the outstanding invocation of the function
        """
        invocation = self._complete(name, request_id)
        if not invocation.succeed(payload):
            LOG.info("Discarding late response of function %s for %s", name, request_id)

    def submit_error(self, name: str, request_id: str, error: ErrorInfo) -> None:
        """
        :raises UnknownInvocationId: if the id is not the outstanding invocation of the function
        """
        invocation = self._complete(name, request_id)
        if not invocation.fail_function(error):
            LOG.info("Discarding late error of function %s for %s", name, request_id)

    def report_init_error(self, name: str, error: ErrorInfo) -> None:
        """
        Called when the process of the function failed to initialize. The function crashes, and every invocation
        queued for it fails immediately.
        """
        entry = self.get(name)
        with entry.lock:
            process = entry.process

        exception = InitializationError(
            f"Function {name} failed to initialize: {error.error_type}: {error.error_message}",
            error_info=error,
        )
        if self._crash(entry, process, exception) and process:
            start_worker_thread(lambda *_: process.stop(), name=f"stop-{name}")

    # introspection and shutdown

    def describe(self) -> List[dict]:
        with self._mutex:
            entries = sorted(self._entries.values(), key=lambda e: e.name)
        return [entry.describe() for entry in entries]

    def shutdown(self) -> None:
        """Fails all pending invocations, stops running builds, and stops all processes in parallel."""
        self._shutting_down.set()
        with self._mutex:
            entries = list(self._entries.values())

        for entry in entries:
            self.builder.cancel(entry.name)

        def _stop(entry: FunctionEntry):
            with entry.lock:
                process = entry.process
                entry.process = None
                pending = entry.channel.close() if entry.channel is not None else []
            for invocation in pending:
                invocation.fail(FunctionUnavailable("lambdawatch is shutting down"))
            if process:
                process.stop()

        if entries:
            parallelize(_stop, entries)
        LOG.debug("Function registry shut down")

