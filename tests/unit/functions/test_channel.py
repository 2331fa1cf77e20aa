import threading
import time

import pytest

from lambdawatch.functions.channel import InvocationChannel
from lambdawatch.functions.exceptions import (
    FunctionUnavailable,
    InvocationTimeout,
    UnknownInvocationId,
)
from lambdawatch.functions.models import Invocation


def _invocation(payload="{}", **kwargs) -> Invocation:
    return Invocation("order-processor", payload, **kwargs)


class TestInvocationChannel:
    def test_take_is_fifo(self):
        channel = InvocationChannel("order-processor")
        first, second, third = _invocation("1"), _invocation("2"), _invocation("3")
        for invocation in (first, second, third):
            channel.put(invocation)

        assert len(channel) == 3
        assert channel.take(timeout=1) is first
        channel.complete(first.request_id)
        assert channel.take(timeout=1) is second
        channel.complete(second.request_id)
        assert channel.take(timeout=1) is third
        assert channel.outstanding is third

    def test_take_times_out_on_empty_channel(self):
        channel = InvocationChannel("order-processor")

        then = time.monotonic()
        assert channel.take(timeout=0.2) is None
        assert time.monotonic() - then >= 0.2

    def test_blocking_take_is_woken_up_by_put(self):
        channel = InvocationChannel("order-processor")
        invocation = _invocation()
        taken = []

        thread = threading.Thread(target=lambda: taken.append(channel.take(timeout=5)))
        thread.start()
        time.sleep(0.1)
        channel.put(invocation)
        thread.join(timeout=5)

        assert taken == [invocation]

    def test_close_wakes_up_poller(self):
        channel = InvocationChannel("order-processor")
        taken = []

        thread = threading.Thread(target=lambda: taken.append(channel.take()))
        thread.start()
        time.sleep(0.1)
        assert channel.close() == []
        thread.join(timeout=5)

        assert not thread.is_alive()
        assert taken == [None]

    def test_close_returns_pending_invocations(self):
        channel = InvocationChannel("order-processor")
        outstanding, queued, timed_out = _invocation(), _invocation(), _invocation()
        channel.put(outstanding)
        channel.put(queued)
        channel.put(timed_out)
        assert channel.take(timeout=1) is outstanding
        timed_out.fail(InvocationTimeout("order-processor", timed_out.request_id, 1))

        assert channel.close() == [outstanding, queued]
        assert channel.closed
        assert channel.outstanding is None
        assert len(channel) == 0

    def test_put_on_closed_channel(self):
        channel = InvocationChannel("order-processor")
        channel.close()

        with pytest.raises(FunctionUnavailable):
            channel.put(_invocation())

    def test_complete_unknown_id_does_not_modify_channel(self):
        channel = InvocationChannel("order-processor")
        first, second = _invocation(), _invocation()
        channel.put(first)
        channel.put(second)
        channel.take(timeout=1)

        with pytest.raises(UnknownInvocationId):
            channel.complete("not-a-request-id")
        with pytest.raises(UnknownInvocationId):
            channel.complete(second.request_id)

        assert channel.outstanding is first
        assert len(channel) == 1
        assert channel.complete(first.request_id) is first
        assert channel.outstanding is None

    def test_complete_without_outstanding_invocation(self):
        channel = InvocationChannel("order-processor")
        invocation = _invocation()
        channel.put(invocation)

        with pytest.raises(UnknownInvocationId):
            channel.complete(invocation.request_id)

    def test_take_skips_fulfilled_invocations(self):
        channel = InvocationChannel("order-processor")
        timed_out, waiting = _invocation(), _invocation()
        channel.put(timed_out)
        channel.put(waiting)
        timed_out.fail(InvocationTimeout("order-processor", timed_out.request_id, 1))

        assert len(channel) == 1
        assert channel.take(timeout=1) is waiting

    def test_take_fails_abandoned_invocation(self):
        channel = InvocationChannel("order-processor")
        abandoned, following = _invocation(), _invocation()
        channel.put(abandoned)
        channel.put(following)

        assert channel.take(timeout=1) is abandoned
        # the process polls again without answering the outstanding invocation
        assert channel.take(timeout=1) is following

        result = abandoned.result(timeout=1)
        assert result.is_error
        assert result.error.error_type == "Runtime.NoResponse"
        assert not following.done()

    def test_wait_settled(self):
        channel = InvocationChannel("order-processor")
        assert channel.wait_settled(timeout=0.1)

        invocation = _invocation()
        channel.put(invocation)
        assert not channel.is_settled()
        assert not channel.wait_settled(timeout=0.1)

        channel.take(timeout=1)
        threading.Timer(0.2, lambda: invocation.succeed(b"ok")).start()
        assert channel.wait_settled(timeout=5)

    def test_invocation_timing_out_in_queue_settles_channel(self):
        channel = InvocationChannel("order-processor")
        invocation = _invocation()
        channel.put(invocation)

        threading.Timer(
            0.2, lambda: invocation.fail(InvocationTimeout("order-processor", "id", 0.2))
        ).start()
        assert channel.wait_settled(timeout=5)
