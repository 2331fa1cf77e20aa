import threading
import time

import pytest

from lambdawatch.functions.exceptions import CompileError, InvocationTimeout
from lambdawatch.functions.models import FunctionState
from lambdawatch.functions.router import InvocationRouter
from lambdawatch.utils.sync import poll_condition


def test_invocations_of_one_function_are_served_in_order(runtime, registry):
    router = runtime.router
    registry.ensure_ready("order-processor")

    completed = []
    lock = threading.Lock()

    def _record(invocation):
        with lock:
            completed.append(invocation.payload)

    payloads = [b'{"sleep": 0.2, "n": %d}' % i for i in range(4)]
    for payload in payloads:
        router.submit("order-processor", payload).add_done_callback(_record)

    assert poll_condition(lambda: len(completed) == len(payloads), timeout=10, interval=0.05)

    assert completed == payloads


def test_functions_do_not_wait_for_each_other(runtime, registry):
    router = runtime.router
    registry.ensure_ready("order-processor")
    registry.ensure_ready("billing")

    slow = router.submit("billing", b'{"sleep": 2}')

    then = time.time()
    result = router.invoke("order-processor", b'{"fast": true}')

    assert result.payload == b'{"fast": true}'
    assert time.time() - then < 1.5
    assert not slow.done()
    assert slow.result(timeout=5).payload == b'{"sleep": 2}'


def test_invocation_timeout(runtime, registry):
    router = runtime.router
    registry.ensure_ready("billing")

    with pytest.raises(InvocationTimeout) as e:
        router.invoke("billing", b'{"sleep": 1}', timeout=0.3)
    assert e.value.error_type == "Timeout"

    # the late response of the timed out invocation is discarded, the next one gets its own response
    assert router.invoke("billing", b'{"n": 2}', timeout=5).payload == b'{"n": 2}'
    assert registry.get("billing").state == FunctionState.READY


def test_default_timeout(runtime, registry):
    router = InvocationRouter(registry, timeout=0.3)
    registry.ensure_ready("billing")

    invocation = router.submit("billing", b'{"sleep": 1}')
    assert invocation.timeout == 0.3
    with pytest.raises(InvocationTimeout):
        invocation.result(timeout=5)


def test_function_error(runtime):
    result = runtime.router.invoke("billing", b'{"raise": "ValidationError"}')

    assert result.is_error
    assert result.payload is None
    assert result.error.error_type == "ValidationError"
    assert result.error.error_message == "something went wrong"
    assert result.error.stack_trace == ["fake_runtime.py"]


def test_preparation_errors_are_raised_immediately(runtime, registry, builder):
    builder.errors["billing"] = CompileError("Failed to compile function billing", exit_code=101)

    with pytest.raises(CompileError):
        runtime.router.submit("billing", b"{}")

    entry = registry.get("billing")
    assert entry.channel is None
    assert entry.state == FunctionState.UNBUILT
