from typing import Optional


class LambdaWatchError(Exception):
    """
    Base class of all errors raised by the function control plane. ``error_type`` is the kind reported to
    invokers, ``status_code`` the HTTP status the invoke endpoint answers with.
    """

    error_type: str = "ServiceException"
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"errorType": self.error_type, "errorMessage": self.message}


class UnknownFunction(LambdaWatchError):
    error_type = "UnknownFunction"
    status_code = 404

    def __init__(self, function_name: str):
        super().__init__(f"Function not found: {function_name}")
        self.function_name = function_name


class DiscoveryError(LambdaWatchError):
    error_type = "DiscoveryError"
    status_code = 500


class CompileError(LambdaWatchError):
    error_type = "CompileError"
    status_code = 500

    def __init__(self, message: str, diagnostics: str = "", exit_code: Optional[int] = None):
        super().__init__(message)
        self.diagnostics = diagnostics
        self.exit_code = exit_code

    def to_dict(self) -> dict:
        result = super().to_dict()
        if self.diagnostics:
            result["diagnostics"] = self.diagnostics
        if self.exit_code is not None:
            result["exitCode"] = self.exit_code
        return result


class StartupTimeout(LambdaWatchError):
    error_type = "StartupTimeout"
    status_code = 502


class InitializationError(LambdaWatchError):
    error_type = "InitializationError"
    status_code = 502

    def __init__(self, message: str, error_info=None):
        super().__init__(message)
        self.error_info = error_info

    def to_dict(self) -> dict:
        result = super().to_dict()
        if self.error_info:
            result["cause"] = self.error_info.to_dict()
        return result


class FunctionCrashed(LambdaWatchError):
    error_type = "FunctionCrashed"
    status_code = 502


class FunctionUnavailable(LambdaWatchError):
    error_type = "FunctionUnavailable"
    status_code = 503

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause

    def to_dict(self) -> dict:
        result = super().to_dict()
        if isinstance(self.cause, LambdaWatchError):
            result["cause"] = self.cause.to_dict()
        return result


class UnknownInvocationId(LambdaWatchError):
    error_type = "UnknownInvocationId"
    status_code = 400

    def __init__(self, function_name: str, request_id: str):
        super().__init__(
            f"Invocation {request_id} is not outstanding for function {function_name}"
        )
        self.function_name = function_name
        self.request_id = request_id


class InvocationTimeout(LambdaWatchError):
    error_type = "Timeout"
    status_code = 504

    def __init__(self, function_name: str, request_id: str, timeout: float):
        super().__init__(
            f"Invocation {request_id} of function {function_name} timed out after {timeout:.2f} seconds"
        )
        self.function_name = function_name
        self.request_id = request_id
        self.timeout = timeout
