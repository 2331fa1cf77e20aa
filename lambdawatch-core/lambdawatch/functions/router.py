import logging
import threading
import time
from typing import Optional, Union

from lambdawatch import config
from lambdawatch.functions.exceptions import FunctionUnavailable, InvocationTimeout
from lambdawatch.functions.models import Invocation, InvocationResult
from lambdawatch.functions.registry import FunctionRegistry

LOG = logging.getLogger(__name__)


class InvocationRouter:
    """
    Entry point for invoke requests. Invocations of one function are served in the order they were submitted,
    invocations of different functions never wait for each other.
    """

    registry: FunctionRegistry
    timeout: float

    def __init__(self, registry: FunctionRegistry, timeout: float = None):
        self.registry = registry
        self.timeout = config.LAMBDA_INVOKE_TIMEOUT if timeout is None else timeout

    def submit(
        self,
        function_name: str,
        payload: Union[str, bytes, None],
        timeout: Optional[float] = None,
    ) -> Invocation:
        """
        Makes sure the function is ready, and queues a new invocation for it. Errors of the preparation (unknown
        function, build failure, startup failure) are raised directly instead of queueing.

        :param function_name: the function to invoke
        :param payload: the request payload
        :param timeout: seconds after which the invocation fails with a ``Timeout``, defaults to the router's
        :return: the queued invocation, whose ``result()`` blocks until it is fulfilled
        """
        timeout = timeout or self.timeout

        handle = self.registry.ensure_ready(function_name)
        invocation = Invocation(function_name, payload, timeout=timeout)
        try:
            self.registry.enqueue(handle, invocation)
        except FunctionUnavailable as e:
            # the process went away between getting ready and queueing, give it one more chance
            LOG.debug("Function %s became unavailable before queueing: %s", function_name, e)
            handle = self.registry.ensure_ready(function_name)
            self.registry.enqueue(handle, invocation)

        self._schedule_timeout(invocation)
        return invocation

    def invoke(
        self,
        function_name: str,
        payload: Union[str, bytes, None],
        timeout: Optional[float] = None,
    ) -> InvocationResult:
        """
        Submits an invocation and waits for its result.

        :raises LambdaWatchError: if the tool failed to run the invocation
        """
        return self.submit(function_name, payload, timeout).result()

    def _schedule_timeout(self, invocation: Invocation) -> None:
        if invocation.deadline is None:
            return

        timer = threading.Timer(
            max(0.0, invocation.deadline - time.time()), self._expire, args=(invocation,)
        )
        timer.name = f"invocation-timeout-{invocation.request_id[:8]}"
        timer.daemon = True
        invocation.add_done_callback(lambda _: timer.cancel())
        if not invocation.done():
            timer.start()

    @staticmethod
    def _expire(invocation: Invocation) -> None:
        error = InvocationTimeout(invocation.function_name, invocation.request_id, invocation.timeout)
        if invocation.fail(error):
            LOG.info("%s", error)
