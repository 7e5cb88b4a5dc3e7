import logging
import pathlib
import sys

from certsmith.errors import InputValidationError

log_format = "[%(asctime)s.%(msecs)03d] %(levelname)-8s %(name)-12s %(lineno)d %(funcName)s - %(message)s"
log_date_format = "%Y-%m-%d:%H:%M:%S"

log_levels = {
    "debug": logging.DEBUG,  # shows all
    "info": logging.INFO,  # shows info and below
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

log = logging.getLogger(__name__)


def configure_logging(log_level: str | None = "info") -> None:
    """
    Configure the root logger, called once from the command line entry points
    unknown or missing levels fall back to info
    """
    logging.basicConfig(
        # Define logging level
        level=log_levels.get(log_level or "info", logging.INFO),
        # Define the date format
        datefmt=log_date_format,
        # Declare the object we created to format the log messages
        format=log_format,
        # Force this log handler to take over the others that may have been declared in other modules
        # see: https://github.com/python/cpython/blob/3.8/Lib/logging/__init__.py#L1912
        force=True,
        # Declare handlers
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


def split_value(value: str | None, delimiter: str = ",") -> list[str]:
    """
    Split a delimited string, each value is trimmed of white space and empty values are dropped
    """
    if value is None:
        return []
    return [v.strip() for v in value.split(delimiter) if v.strip() != ""]


def require_file_value(value: str | pathlib.Path | None, name: str) -> pathlib.Path:
    """The value must be a path to a file that exists"""
    text = str(value).strip() if value is not None else ""
    if text == "" or pathlib.Path(text).is_file() is False:
        raise InputValidationError(f"File for '{name}' argument not found: {text}")
    return pathlib.Path(text)


def force_string_input(value: str | None, message: str) -> str:
    """
    Prompt on stdin until a non empty value is given, an existing value is returned as is
    end of input gives up and returns an empty string
    """
    value = (value or "").strip()
    while value == "":
        try:
            value = input(message).strip()
        except EOFError:
            log.debug(f"no input available for prompt: {message}")
            return ""
    return value
