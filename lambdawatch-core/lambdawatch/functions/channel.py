import logging
import threading
import time
from collections import deque
from typing import Deque, List, Optional

from lambdawatch.functions.exceptions import FunctionUnavailable, UnknownInvocationId
from lambdawatch.functions.models import ErrorInfo, Invocation

LOG = logging.getLogger(__name__)


class InvocationChannel:
    """
    Rendezvous between the router (producer) and the polling function process (consumer) of one function.
    Invocations wait in FIFO order, and at most one of them is handed out (outstanding) at any time. The
    outstanding invocation has to be completed through ``complete`` before the next one is handed out.

    A closed channel accepts no more invocations and wakes up all waiting pollers.
    """

    def __init__(self, function_name: str):
        self.function_name = function_name
        self._queue: Deque[Invocation] = deque()
        self._outstanding: Optional[Invocation] = None
        self._closed = False
        self._cond = threading.Condition()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def outstanding(self) -> Optional[Invocation]:
        return self._outstanding

    def put(self, invocation: Invocation) -> None:
        """
        Appends the invocation to the tail of the queue.

        :raises FunctionUnavailable: if the channel was closed
        """
        with self._cond:
            if self._closed:
                raise FunctionUnavailable(f"Function {self.function_name} is not accepting invocations")
            self._queue.append(invocation)
            self._cond.notify_all()

        # invocations that time out while queued have to wake up anyone waiting for the channel to settle
        invocation.add_done_callback(self._on_invocation_done)

    def take(self, timeout: float = None) -> Optional[Invocation]:
        """
        Blocks until an invocation is available and hands it out as the new outstanding invocation.
        Invocations that were already fulfilled while waiting in the queue (e.g., timed out) are dropped. If a
        previous invocation is still outstanding, the process gave up on it, and it is failed with
        ``Runtime.NoResponse``.

        :param timeout: seconds to wait, or None to wait until an invocation arrives or the channel is closed
        :return: the invocation, or None if the channel was closed or the timeout elapsed
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        abandoned = None

        with self._cond:
            if self._outstanding is not None:
                abandoned, self._outstanding = self._outstanding, None
                self._cond.notify_all()

            invocation = None
            while True:
                while self._queue and self._queue[0].done():
                    skipped = self._queue.popleft()
                    LOG.debug("Skipping fulfilled invocation %s", skipped.request_id)

                if self._closed:
                    break

                if self._queue:
                    invocation = self._queue.popleft()
                    self._outstanding = invocation
                    break

                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    break
                self._cond.wait(remaining)

        if abandoned is not None and abandoned.fail_function(
            ErrorInfo(
                "Runtime.NoResponse",
                f"Function {self.function_name} polled for the next invocation without responding",
            )
        ):
            LOG.warning(
                "Function %s asked for a new invocation before answering %s",
                self.function_name,
                abandoned.request_id,
            )

        return invocation

    def complete(self, request_id: str) -> Invocation:
        """
        Removes the outstanding invocation with the given id from the channel and returns it, so the caller
        can fulfill its response slot.

        :raises UnknownInvocationId: if the id is not the one of the outstanding invocation. The channel is
            not modified in that case.
        """
        with self._cond:
            outstanding = self._outstanding
            if outstanding is None or outstanding.request_id != request_id:
                raise UnknownInvocationId(self.function_name, request_id)
            self._outstanding = None
            self._cond.notify_all()
            return outstanding

    def close(self) -> List[Invocation]:
        """
        Closes the channel and returns every invocation that is still waiting for its result (outstanding
        first, then the queue in FIFO order). The caller is responsible for failing them.
        """
        with self._cond:
            self._closed = True
            pending = []
            if self._outstanding is not None:
                pending.append(self._outstanding)
                self._outstanding = None
            pending.extend(self._queue)
            self._queue.clear()
            self._cond.notify_all()

        return [invocation for invocation in pending if not invocation.done()]

    def is_settled(self) -> bool:
        """Whether no invocation is waiting for a result from the process anymore."""
        with self._cond:
            if self._closed:
                return True
            if self._outstanding is not None and not self._outstanding.done():
                return False
            return not any(not invocation.done() for invocation in self._queue)

    def wait_settled(self, timeout: float = None) -> bool:
        """
        Waits until every queued and outstanding invocation was fulfilled, or the channel was closed.

        :return: False if the timeout elapsed first
        """
        with self._cond:
            return self._cond.wait_for(self.is_settled, timeout)

    def _on_invocation_done(self, _: Invocation) -> None:
        with self._cond:
            self._cond.notify_all()

    def __len__(self):
        with self._cond:
            return sum(1 for invocation in self._queue if not invocation.done())
