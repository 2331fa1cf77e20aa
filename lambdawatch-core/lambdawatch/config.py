import logging
import os
import time
from typing import Dict, List, Optional, Union

from lambdawatch.constants import (
    DEFAULT_PORT_RUNTIME_API,
    FALSE_STRINGS,
    LOCALHOST_IP,
    LOG_LEVELS,
    TARGET_ARM,
    TARGET_X86_64,
    TRACE_LOG_LEVELS,
    TRUE_STRINGS,
)

# keep track of start time, for performance debugging
load_start_time = time.time()


def eval_log_type(env_var_name: str) -> Union[str, bool]:
    """Get the log type from environment variable"""
    lw_log = os.environ.get(env_var_name, "").lower().strip()
    return lw_log if lw_log in LOG_LEVELS else False


def is_env_true(env_var_name: str) -> bool:
    """Whether the given environment variable has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() in TRUE_STRINGS


def is_env_not_false(env_var_name: str) -> bool:
    """Whether the given environment variable is empty or has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() not in FALSE_STRINGS


def load_environment(profiles: str = None, env=os.environ) -> List[str]:
    """Loads the environment variables from ~/.lambdawatch/{profile}.env, for each profile listed in the profiles.
    :param env: environment to load profile to. Defaults to `os.environ`
    :param profiles: a comma separated list of profiles to load (defaults to "default")
    :returns str: the list of the actually loaded profiles (might be the fallback)
    """
    if not profiles:
        profiles = "default"

    profiles = [profile.strip() for profile in profiles.split(",")]
    environment = {}
    import dotenv

    for profile in profiles:
        path = os.path.join(CONFIG_DIR, f"{profile}.env")
        if not os.path.exists(path):
            continue
        environment.update(dotenv.dotenv_values(path))

    for k, v in environment.items():
        # we do not want to override the environment
        if k not in env and v is not None:
            env[k] = v

    return profiles


def load_env_file(path: Optional[str]) -> Dict[str, str]:
    """
    Reads the package-wide function environment defaults from a dotenv file. Variables without a value are
    dropped.

    :param path: path to the dotenv file, or None
    :return: the variables of the file, or an empty dict if no path was given
    """
    if not path:
        return {}
    import dotenv

    if not os.path.isfile(path):
        raise FileNotFoundError(f"environment file {path} does not exist")

    return {k: v for k, v in dotenv.dotenv_values(path).items() if v is not None}


def resolve_build_target(target: Optional[str]) -> Optional[str]:
    """
    Expands the architecture shortcuts ``arm64`` and ``x86_64`` into the full target triple. An empty target
    means "build for the host", which is what a process running locally needs.
    """
    if not target:
        return None
    shortcuts = {
        "arm64": TARGET_ARM,
        "aarch64": TARGET_ARM,
        "x86_64": TARGET_X86_64,
        "x86-64": TARGET_X86_64,
    }
    return shortcuts.get(target.lower(), target)


# CLI specific: the configuration profile to load
CONFIG_PROFILE = os.environ.get("CONFIG_PROFILE", "").strip()

# CLI specific: host configuration directory
CONFIG_DIR = os.environ.get("CONFIG_DIR", os.path.expanduser("~/.lambdawatch"))

# keep this on top to populate environment
# CLI specific: the actually loaded configuration profile
LOADED_PROFILES = load_environment(CONFIG_PROFILE)

# whether to enable verbose debug logging
LW_LOG = eval_log_type("LW_LOG")
DEBUG = is_env_true("DEBUG") or LW_LOG in TRACE_LOG_LEVELS

# host and port the runtime API emulator (and the invoke endpoint) bind to
LAMBDA_RUNTIME_API_HOST = os.environ.get("LAMBDA_RUNTIME_API_HOST", "").strip() or LOCALHOST_IP
LAMBDA_RUNTIME_API_PORT = int(os.environ.get("LAMBDA_RUNTIME_API_PORT") or DEFAULT_PORT_RUNTIME_API)

# the cargo manifest of the workspace that holds the functions
LAMBDA_MANIFEST_PATH = os.environ.get("LAMBDA_MANIFEST_PATH", "").strip() or "Cargo.toml"

# target triple to compile functions for (empty: host target)
LAMBDA_BUILD_TARGET = resolve_build_target(os.environ.get("LAMBDA_BUILD_TARGET", "").strip())

# cargo profile used to compile functions
LAMBDA_BUILD_PROFILE = os.environ.get("LAMBDA_BUILD_PROFILE", "").strip() or "dev"

# compiler used to build functions (cargo, cargo-zigbuild)
LAMBDA_COMPILER = os.environ.get("LAMBDA_COMPILER", "").strip() or "cargo"

# additional arguments passed to the compiler
LAMBDA_COMPILER_EXTRA_ARGS = os.environ.get("LAMBDA_COMPILER_EXTRA_ARGS", "").split()

# seconds a started function process has to contact the runtime API before it is considered crashed
LAMBDA_STARTUP_TIMEOUT = float(os.environ.get("LAMBDA_STARTUP_TIMEOUT") or 10)

# number of consecutive crashes after which a function is reported as unavailable
LAMBDA_STARTUP_RETRIES = int(os.environ.get("LAMBDA_STARTUP_RETRIES") or 3)

# default deadline of a single invocation in seconds
LAMBDA_INVOKE_TIMEOUT = float(os.environ.get("LAMBDA_INVOKE_TIMEOUT") or 30)

# seconds to wait for a function process to exit after requesting shutdown, before killing it
LAMBDA_SHUTDOWN_GRACE_PERIOD = float(os.environ.get("LAMBDA_SHUTDOWN_GRACE_PERIOD") or 5)

# whether to watch function sources and rebuild on change
LAMBDA_WATCH = is_env_not_false("LAMBDA_WATCH")

# quiet period in seconds after which a burst of file system events is flushed
LAMBDA_WATCH_DEBOUNCE = float(os.environ.get("LAMBDA_WATCH_DEBOUNCE") or 0.5)

# use the polling observer instead of native file system events
LAMBDA_WATCH_POLLING = is_env_true("LAMBDA_WATCH_POLLING")

# additional glob patterns (comma separated) that are ignored by the watcher
LAMBDA_WATCH_IGNORE = [
    p.strip() for p in os.environ.get("LAMBDA_WATCH_IGNORE", "").split(",") if p.strip()
]

# dotenv file with environment variables passed to every function
LAMBDA_ENV_FILE = os.environ.get("LAMBDA_ENV_FILE", "").strip()

# memory size reported to function processes
LAMBDA_FUNCTION_MEMORY_SIZE = int(os.environ.get("LAMBDA_FUNCTION_MEMORY_SIZE") or 4096)

# region and account used to compose invoked function ARNs
LAMBDA_DEFAULT_REGION = os.environ.get("LAMBDA_DEFAULT_REGION", "").strip() or "us-east-1"
LAMBDA_ACCOUNT_ID = os.environ.get("LAMBDA_ACCOUNT_ID", "").strip() or "000000000000"


def is_trace_logging_enabled():
    if LW_LOG:
        log_level = str(LW_LOG).upper()
        return log_level.lower() in TRACE_LOG_LEVELS
    return False


def runtime_api_address(host: str = None, port: int = None) -> str:
    """Returns the ``host:port`` address function processes use to reach the runtime API."""
    host = host or LAMBDA_RUNTIME_API_HOST
    if host in ("0.0.0.0", "::"):
        host = LOCALHOST_IP
    return f"{host}:{port or LAMBDA_RUNTIME_API_PORT}"


# set log levels immediately, but will be overwritten later by setup_logging
if DEBUG:
    logging.getLogger("").setLevel(logging.DEBUG)
    logging.getLogger("lambdawatch").setLevel(logging.DEBUG)

LOG = logging.getLogger(__name__)
if is_trace_logging_enabled():
    load_end_time = time.time()
    LOG.debug(
        "Initializing the configuration took %s ms", int((load_end_time - load_start_time) * 1000)
    )
