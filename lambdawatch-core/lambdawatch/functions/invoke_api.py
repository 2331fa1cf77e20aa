import json
import logging

from lambdawatch.constants import (
    HEADER_EXECUTED_VERSION,
    HEADER_FUNCTION_ERROR,
    HEADER_INVOKE_TIMEOUT,
    INVOKE_API_VERSION,
)
from lambdawatch.functions.api_utils import error_response, parse_timeout
from lambdawatch.functions.exceptions import LambdaWatchError
from lambdawatch.functions.registry import FunctionRegistry
from lambdawatch.functions.router import InvocationRouter
from lambdawatch.http import Request, Response, route

LOG = logging.getLogger(__name__)


class InvokeEndpoints:
    """The invoke entry point (shaped like the Lambda ``Invoke`` operation) and a listing of function states."""

    def __init__(self, router: InvocationRouter, registry: FunctionRegistry):
        self.router = router
        self.registry = registry

    @route(f"/{INVOKE_API_VERSION}/functions/<function_name>/invocations", methods=["POST"])
    def invoke(self, request: Request, function_name: str) -> Response:
        try:
            timeout = parse_timeout(request.headers.get(HEADER_INVOKE_TIMEOUT))
        except ValueError as e:
            return Response.for_json(
                {"errorType": "InvalidParameterValueException", "errorMessage": str(e)}, status=400
            )

        try:
            result = self.router.invoke(function_name, request.get_data(), timeout=timeout)
        except LambdaWatchError as e:
            LOG.info("Invocation of function %s failed: %s", function_name, e)
            return error_response(e)

        headers = {HEADER_EXECUTED_VERSION: "$LATEST"}
        if result.is_error:
            headers[HEADER_FUNCTION_ERROR] = "Unhandled"
            return Response(
                json.dumps(result.error.to_dict()),
                status=200,
                headers=headers,
                mimetype="application/json",
            )
        return Response(result.payload, status=200, headers=headers, mimetype="application/json")

    @route("/_lambdawatch/functions", methods=["GET"])
    def list_functions(self, request: Request):
        return {"functions": self.registry.describe()}
