import json
from typing import Optional

from lambdawatch.constants import HEADER_AMZN_ERROR_TYPE
from lambdawatch.functions.exceptions import LambdaWatchError
from lambdawatch.http import Response


def error_response(error: LambdaWatchError, status: Optional[int] = None) -> Response:
    """Serializes the given error into a JSON error document."""
    return Response(
        json.dumps(error.to_dict()),
        status=status or error.status_code,
        headers={HEADER_AMZN_ERROR_TYPE: error.error_type},
        mimetype="application/json",
    )


def parse_timeout(value: Optional[str]) -> Optional[float]:
    """
    Parses a timeout given in seconds.

    :raises ValueError: if the value is not a positive number
    """
    if not value:
        return None
    timeout = float(value)
    if timeout <= 0:
        raise ValueError(f"timeout must be positive, got {value}")
    return timeout
