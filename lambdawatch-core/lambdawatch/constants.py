import lambdawatch

# lambdawatch version
VERSION = lambdawatch.__version__

# loopback address
LOCALHOST_IP = "127.0.0.1"

# default port of the runtime API emulator and invoke endpoint
DEFAULT_PORT_RUNTIME_API = 9000

# default encoding used to convert strings to byte arrays
DEFAULT_ENCODING = "utf-8"

TRUE_STRINGS = ("1", "true", "True")
FALSE_STRINGS = ("0", "false", "False")

LOG_LEVELS = ("trace-internal", "trace", "debug", "info", "warn", "error", "warning")

LW_LOG_TRACE = "trace"
LW_LOG_TRACE_INTERNAL = "trace-internal"
TRACE_LOG_LEVELS = [LW_LOG_TRACE, LW_LOG_TRACE_INTERNAL]

# version of the Lambda runtime API spoken by function processes
RUNTIME_API_VERSION = "2018-06-01"

# version of the Lambda invoke API served to invokers
INVOKE_API_VERSION = "2015-03-31"

# HTTP headers of the Lambda runtime API
HEADER_RUNTIME_REQUEST_ID = "Lambda-Runtime-Aws-Request-Id"
HEADER_RUNTIME_DEADLINE_MS = "Lambda-Runtime-Deadline-Ms"
HEADER_RUNTIME_FUNCTION_ARN = "Lambda-Runtime-Invoked-Function-Arn"
HEADER_RUNTIME_TRACE_ID = "Lambda-Runtime-Trace-Id"
HEADER_RUNTIME_ERROR_TYPE = "Lambda-Runtime-Function-Error-Type"

# HTTP headers of the invoke API
HEADER_FUNCTION_ERROR = "X-Amz-Function-Error"
HEADER_EXECUTED_VERSION = "X-Amz-Executed-Version"
HEADER_AMZN_ERROR_TYPE = "X-Amzn-Errortype"
HEADER_INVOKE_TIMEOUT = "X-Lambdawatch-Invoke-Timeout"

# compile targets supported by AWS Lambda
TARGET_ARM = "aarch64-unknown-linux-gnu"
TARGET_X86_64 = "x86_64-unknown-linux-gnu"

# paths that never trigger a rebuild and are skipped when fingerprinting sources
DEFAULT_WATCH_IGNORE = (
    "target",
    ".git",
    ".idea",
    ".vscode",
    "*.swp",
    "*.swx",
    "*~",
    ".#*",
)
