import logging
from typing import Any, Callable

from lambdawatch.utils.functions import call_safe

LOG = logging.getLogger(__name__)


class ShutdownHandlers:
    """
    Register / unregister shutdown handlers. All registered shutdown handlers should execute as fast as possible.
    Blocking shutdown handlers will block the shutdown of the runtime.
    """

    def __init__(self):
        self._callbacks = []

    def register(self, shutdown_handler: Callable[[], Any]) -> None:
        """
        Register shutdown handler. Handler should not block or take more than a couple seconds.

        :param shutdown_handler: Callable without parameters
        """
        self._callbacks.append(shutdown_handler)

    def unregister(self, shutdown_handler: Callable[[], Any]) -> None:
        """
        Unregister a handler. Idempotent operation.

        :param shutdown_handler: Shutdown handler which was previously registered
        """
        try:
            self._callbacks.remove(shutdown_handler)
        except ValueError:
            pass

    def run(self) -> None:
        """
        Execute shutdown handlers in reverse order of registration.
        Should only be called once, on shutdown.
        """
        for callback in reversed(list(self._callbacks)):
            call_safe(callback)
        self._callbacks.clear()
