import logging
import sys
import warnings

from lambdawatch import config, constants

from .format import AddFormattedAttributes, DefaultFormatter, FunctionOutputFilter

# The log levels for modules are evaluated incrementally for logging granularity,
# from highest (DEBUG) to lowest (TRACE_INTERNAL). Hence, each module below should have
# higher level which serves as the default.

default_log_levels = {
    "asyncio": logging.INFO,
    "requests": logging.WARNING,
    "urllib3": logging.WARNING,
    "watchdog": logging.WARNING,
    "werkzeug": logging.WARNING,
    "rolo": logging.WARNING,
    "lambdawatch.functions.runtime_api": logging.INFO,
    "lambdawatch.functions.channel": logging.INFO,
}

trace_log_levels = {
    "rolo": logging.DEBUG,
    "werkzeug": logging.INFO,
    "lambdawatch.functions.runtime_api": logging.DEBUG,
}

trace_internal_log_levels = {
    "watchdog": logging.DEBUG,
    "lambdawatch.functions.channel": logging.DEBUG,
}

FUNCTION_OUTPUT_LOGGER = "lambdawatch.functions.output"


def setup_logging_for_cli(log_level=logging.INFO):
    logging.basicConfig(level=log_level)

    # set log levels of loggers
    logging.root.setLevel(log_level)
    logging.getLogger("lambdawatch").setLevel(log_level)
    for logger, level in default_log_levels.items():
        logging.getLogger(logger).setLevel(level)


def get_log_level_from_config():
    # overriding the log level if LW_LOG has been set
    if config.LW_LOG:
        log_level = str(config.LW_LOG).upper()
        if log_level.lower() in constants.TRACE_LOG_LEVELS:
            log_level = "DEBUG"
        if log_level == "WARN":
            log_level = "WARNING"
        log_level = logging._nameToLevel[log_level]
        return log_level

    return logging.DEBUG if config.DEBUG else logging.INFO


def setup_logging_from_config():
    log_level = get_log_level_from_config()
    setup_logging(log_level)

    if config.is_trace_logging_enabled():
        for name, level in trace_log_levels.items():
            logging.getLogger(name).setLevel(level)
    if config.LW_LOG == constants.LW_LOG_TRACE_INTERNAL:
        for name, level in trace_internal_log_levels.items():
            logging.getLogger(name).setLevel(level)


def create_default_handler(log_level: int):
    log_handler = logging.StreamHandler(stream=sys.stderr)
    log_handler.setLevel(log_level)
    log_handler.setFormatter(DefaultFormatter())
    log_handler.addFilter(AddFormattedAttributes())
    log_handler.addFilter(FunctionOutputFilter())
    return log_handler


def setup_logging(log_level=logging.INFO) -> None:
    """
    Configures the python logging environment for lambdawatch.

    :param log_level: the optional log level.
    """
    # set create a default handler for the root logger (basically logging.basicConfig but explicit)
    log_handler = create_default_handler(log_level)

    # replace any existing handlers
    logging.basicConfig(level=log_level, handlers=[log_handler], force=True)

    # disable some logs and warnings
    warnings.filterwarnings("ignore")
    logging.captureWarnings(True)

    # set log levels of loggers
    logging.root.setLevel(log_level)
    logging.getLogger("lambdawatch").setLevel(log_level)
    for logger, level in default_log_levels.items():
        logging.getLogger(logger).setLevel(level)

    # function output is always shown, it is what the developer is looking at
    logging.getLogger(FUNCTION_OUTPUT_LOGGER).setLevel(logging.INFO)
