import logging
import threading
from typing import Optional

from lambdawatch import config
from lambdawatch.functions.build import Builder, CargoBuilder
from lambdawatch.functions.discovery import CargoWorkspace, Workspace
from lambdawatch.functions.exceptions import DiscoveryError
from lambdawatch.functions.registry import FunctionRegistry
from lambdawatch.functions.router import InvocationRouter
from lambdawatch.functions.server import FunctionServer, create_router
from lambdawatch.functions.watcher import SourceWatcher
from lambdawatch.utils import threads

from .shutdown import ShutdownHandlers

LOG = logging.getLogger(__name__)


class LambdaWatchRuntime:
    """
    The lambdawatch runtime. It has the following responsibilities:

      - Discover the functions of the workspace and hold them in a ``FunctionRegistry``
      - Serve the runtime API and the invoke entry point with a ``FunctionServer``
      - Watch the sources of the functions and invalidate them on change (``SourceWatcher``)
      - Tear everything down in reverse order on shutdown, including all function processes
    """

    registry: FunctionRegistry
    router: InvocationRouter
    server: Optional[FunctionServer]
    watcher: Optional[SourceWatcher]

    def __init__(
        self,
        registry: FunctionRegistry,
        host: str = None,
        port: int = None,
        watch: bool = None,
        invoke_timeout: float = None,
    ):
        self.registry = registry
        self.router = InvocationRouter(registry, timeout=invoke_timeout)
        self.host = host or config.LAMBDA_RUNTIME_API_HOST
        self.port = config.LAMBDA_RUNTIME_API_PORT if port is None else port
        self.watch = config.LAMBDA_WATCH if watch is None else watch

        self.server = None
        self.watcher = None
        self.shutdown_handlers = ShutdownHandlers()

        self.starting = threading.Event()
        self.ready = threading.Event()
        self.stopping = threading.Event()
        self.stopped = threading.Event()
        self._running = False

    @property
    def url(self) -> Optional[str]:
        return self.server.url if self.server else None

    def start(self):
        """
        Discovers the functions and starts serving. Returns once the server is up.

        :raises OSError: if the server cannot bind its port
        """
        self.starting.set()

        try:
            sources = self.registry.discover()
            LOG.info("Discovered functions: %s", ", ".join(s.name for s in sources) or "none")
        except DiscoveryError as e:
            LOG.warning("%s, functions will be discovered on first invocation", e)

        self.server = FunctionServer(
            create_router(self.registry, self.router), port=self.port, host=self.host
        )
        self.registry.runtime_api_address = config.runtime_api_address(self.host, self.server.port)

        self.server.start()
        self.shutdown_handlers.register(self.server.shutdown)
        self.shutdown_handlers.register(self.registry.shutdown)
        if not self.server.wait_is_up(timeout=10):
            raise TimeoutError(f"gave up waiting for the function server to start on {self.url}")

        if self.watch:
            self.watcher = SourceWatcher(self.registry)
            self.watcher.start()
            self.shutdown_handlers.register(self.watcher.stop)

        LOG.info("Runtime API and invoke endpoint listening on %s", self.url)
        self.ready.set()

    def run(self):
        """
        Starts the runtime and blocks the thread until ``shutdown()`` is called (or the thread is interrupted).
        """
        self._running = True
        try:
            self.start()
            self.stopping.wait()
        finally:
            self._on_return()

    def shutdown(self):
        """
        Initiates an orderly shutdown. If the runtime is served by ``run()``, the shutdown handlers are run by
        ``run()`` once it returns, otherwise they are run right away.
        """
        if self.stopping.is_set():
            return
        self.stopping.set()
        if not self._running:
            self._on_return()

    def is_ready(self) -> bool:
        return self.ready.is_set()

    def _on_return(self):
        if self.stopped.is_set():
            return
        self.stopping.set()
        LOG.debug("[shutdown] Stopping watcher, functions, and server ...")
        self.shutdown_handlers.run()
        LOG.debug("[shutdown] Cleaning up resources ...")
        threads.cleanup_threads_and_processes()
        self.stopped.set()
        LOG.debug("[shutdown] Completed, bye!")


def create_from_environment(
    manifest_path: str = None,
    host: str = None,
    port: int = None,
    build_target: str = None,
    build_profile: str = None,
    watch: bool = None,
    workspace: Workspace = None,
    builder: Builder = None,
) -> LambdaWatchRuntime:
    """
    Creates a new runtime for the cargo workspace of the given manifest, using the configuration of the
    environment for everything that is not passed explicitly.

    :return: a new LambdaWatchRuntime instance
    """
    workspace = workspace or CargoWorkspace(manifest_path)
    registry = FunctionRegistry(
        workspace,
        builder=builder or CargoBuilder(),
        runtime_api_address=config.runtime_api_address(host, port),
        build_target=config.resolve_build_target(build_target) if build_target else None,
        build_profile=build_profile,
    )
    return LambdaWatchRuntime(registry, host=host, port=port, watch=watch)
