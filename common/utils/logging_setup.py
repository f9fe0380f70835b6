"""
Logging configuration for the VPN system.
Sets up logging with file and console handlers.
"""
import os
import logging
import logging.handlers
import sys
from typing import Iterable, Optional

REDACTED = "[REDACTED]"

_exception_formatter = logging.Formatter()


class SecretFilter(logging.Filter):
    """
    Replaces secret strings in log records before they are emitted
    """
    def __init__(self, secrets: Iterable[str]):
        super().__init__()
        self.secrets = [s for s in secrets if s]

    def filter(self, record: logging.LogRecord) -> bool:
        if not self.secrets:
            return True

        message = record.getMessage()
        redacted = self._scrub(message)

        if redacted != message:
            record.msg = redacted
            record.args = None

        # Traceback text is rendered once and cached on the record
        if record.exc_info and not record.exc_text:
            record.exc_text = _exception_formatter.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self._scrub(record.exc_text)
        if record.stack_info:
            record.stack_info = self._scrub(record.stack_info)
        return True

    def _scrub(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return text


def setup_logging(
    app_name: str = "pskvpn",
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_to_console: bool = True,
    log_format: Optional[str] = None,
    max_size: int = 10485760,  # 10 MB
    backup_count: int = 5,
    include_process_info: bool = True,
    secrets: Iterable[str] = ()
) -> logging.Logger:
    """
    Configure logging for the application

    Every component logs under "<app_name>.<component>", so configuring the
    parent logger here covers the whole tree.

    Args:
        app_name: Name of the application (prefix for logger)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (None for no file logging)
        log_to_console: Whether to log to console
        log_format: Custom log format (None for default)
        max_size: Maximum log file size in bytes
        backup_count: Number of backup log files
        include_process_info: Include process ID and thread name in logs
        secrets: Strings that must never appear in log output

    Returns:
        Configured logger
    """
    # Convert string log level to logging constant
    numeric_level = getattr(logging, str(log_level).upper(), logging.INFO)

    logger = logging.getLogger(app_name)
    logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicate logging
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if not log_format:
        if include_process_info:
            log_format = '%(asctime)s - %(name)s - [%(process)d:%(threadName)s] - %(levelname)s - %(message)s'
        else:
            log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    formatter = logging.Formatter(log_format)
    secret_filter = SecretFilter(secrets)

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(secret_filter)
        logger.addHandler(console_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir)

            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_size,
                backupCount=backup_count
            )
            file_handler.setFormatter(formatter)
            file_handler.addFilter(secret_filter)
            logger.addHandler(file_handler)

            logger.info(f"Logging to file: {log_file}")
        except OSError as e:
            logger.error(f"Failed to setup file logging: {e}")

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    logger.info(f"Logging initialized for {app_name} at level {log_level}")

    return logger
