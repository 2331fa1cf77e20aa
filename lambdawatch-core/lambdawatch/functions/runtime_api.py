"""Emulation of the Lambda runtime API (https://docs.aws.amazon.com/lambda/latest/dg/runtimes-api.html)."""

import logging

from lambdawatch import config
from lambdawatch.constants import (
    HEADER_RUNTIME_DEADLINE_MS,
    HEADER_RUNTIME_ERROR_TYPE,
    HEADER_RUNTIME_FUNCTION_ARN,
    HEADER_RUNTIME_REQUEST_ID,
    HEADER_RUNTIME_TRACE_ID,
    RUNTIME_API_VERSION,
)
from lambdawatch.functions.api_utils import error_response
from lambdawatch.functions.exceptions import (
    FunctionUnavailable,
    LambdaWatchError,
    UnknownInvocationId,
)
from lambdawatch.functions.models import ErrorInfo
from lambdawatch.functions.registry import FunctionRegistry
from lambdawatch.http import Request, Response, route

LOG = logging.getLogger(__name__)

RUNTIME_PATH = f"/<function_name>/{RUNTIME_API_VERSION}/runtime"


def function_arn(function_name: str, region: str = None, account_id: str = None) -> str:
    region = region or config.LAMBDA_DEFAULT_REGION
    account_id = account_id or config.LAMBDA_ACCOUNT_ID
    return f"arn:aws:lambda:{region}:{account_id}:function:{function_name}"


class RuntimeApiEndpoints:
    """
    Runtime API of all functions. Every function process gets its own path prefix (``/<function_name>``), the
    endpoints only translate between HTTP and the registry, which owns all invocation data.
    """

    def __init__(self, registry: FunctionRegistry):
        self.registry = registry

    @route(f"{RUNTIME_PATH}/invocation/next", methods=["GET"])
    def next_invocation(self, request: Request, function_name: str) -> Response:
        try:
            invocation = self.registry.next_invocation(function_name)
        except LambdaWatchError as e:
            return error_response(e)

        if invocation is None:
            return error_response(
                FunctionUnavailable(f"Function {function_name} does not accept invocations anymore"),
                status=410,
            )

        headers = {
            HEADER_RUNTIME_REQUEST_ID: invocation.request_id,
            HEADER_RUNTIME_DEADLINE_MS: str(invocation.deadline_ms),
            HEADER_RUNTIME_FUNCTION_ARN: function_arn(function_name),
            HEADER_RUNTIME_TRACE_ID: invocation.trace_id,
        }
        return Response(invocation.payload, status=200, headers=headers, mimetype="application/json")

    @route(f"{RUNTIME_PATH}/invocation/<request_id>/response", methods=["POST"])
    def invocation_response(self, request: Request, function_name: str, request_id: str) -> Response:
        try:
            self.registry.submit_response(function_name, request_id, request.get_data())
        except UnknownInvocationId as e:
            LOG.info("Rejected response of function %s: %s", function_name, e)
            return error_response(e)
        except LambdaWatchError as e:
            return error_response(e)
        return Response.for_json({"status": "OK"}, status=202)

    @route(f"{RUNTIME_PATH}/invocation/<request_id>/error", methods=["POST"])
    def invocation_error(self, request: Request, function_name: str, request_id: str) -> Response:
        error = ErrorInfo.from_payload(
            request.get_data(), request.headers.get(HEADER_RUNTIME_ERROR_TYPE)
        )
        try:
            self.registry.submit_error(function_name, request_id, error)
        except UnknownInvocationId as e:
            LOG.info("Rejected error of function %s: %s", function_name, e)
            return error_response(e)
        except LambdaWatchError as e:
            return error_response(e)
        return Response.for_json({"status": "OK"}, status=202)

    @route(f"{RUNTIME_PATH}/init/error", methods=["POST"])
    def init_error(self, request: Request, function_name: str) -> Response:
        error = ErrorInfo.from_payload(
            request.get_data(), request.headers.get(HEADER_RUNTIME_ERROR_TYPE)
        )
        try:
            self.registry.report_init_error(function_name, error)
        except LambdaWatchError as e:
            return error_response(e)
        return Response.for_json({"status": "OK"}, status=202)
