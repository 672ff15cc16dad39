"""
Logging configuration module.

Two channels share one daily rotation scheme:

- Operational log (package logger "src"): everything modules emit through
  logging.getLogger(__name__), filtered by the configured level.
- Audit log ("src.lifecycle.audit"): one line per committed transition,
  job creation and SLA escalation. Always written at INFO so the
  lifecycle trail survives a quiet operational level.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

# Process start time is captured once and reused for all daily logs
_PROCESS_START_TIME: Optional[str] = None

LOGGER_NAME = "src"
LOG_FILE_PREFIX = "repairx_lifecycle"

AUDIT_LOGGER_NAME = "src.lifecycle.audit"
AUDIT_FILE_PREFIX = "repairx_audit"

_OPERATIONAL_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_AUDIT_FORMAT = "%(asctime)s %(levelname)s %(message)s"


def _process_start() -> str:
    global _PROCESS_START_TIME
    if _PROCESS_START_TIME is None:
        _PROCESS_START_TIME = datetime.now().strftime("%H%M%S")
    return _PROCESS_START_TIME


class DailyRotatingFileHandler(logging.FileHandler):
    """
    Daily rotating file handler.

    Creates one log file per calendar day with format:
    <log_dir>/<prefix>_YYYYMMDD_<START_HHMMSS>.log

    START_HHMMSS is fixed at process start, only YYYYMMDD changes.
    """

    def __init__(self, log_dir: str = "logs", encoding: str = "utf-8", prefix: str = LOG_FILE_PREFIX):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix

        self._start_hhmmss = _process_start()
        self._current_date = datetime.now().strftime("%Y%m%d")

        super().__init__(self._log_path(self._current_date), mode="a", encoding=encoding)

    def _log_path(self, date_str: str) -> str:
        return str(self.log_dir / f"{self.prefix}_{date_str}_{self._start_hhmmss}.log")

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a record, rotating to a new file if the date changed."""
        current_date = datetime.now().strftime("%Y%m%d")

        if self._current_date != current_date:
            self.close()
            self.baseFilename = self._log_path(current_date)
            self._current_date = current_date
            self.stream = self._open()

        super().emit(record)


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()


def setup_audit_logging(log_dir: str = "logs") -> logging.Logger:
    """
    Attach the audit file handler to the audit logger.

    The audit logger keeps propagating, so its lines also reach the
    operational handlers when their level lets INFO through.
    """
    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    audit_logger.setLevel(logging.INFO)
    _reset_handlers(audit_logger)

    audit_handler = DailyRotatingFileHandler(log_dir=log_dir, prefix=AUDIT_FILE_PREFIX)
    audit_handler.setLevel(logging.INFO)
    audit_handler.setFormatter(logging.Formatter(_AUDIT_FORMAT))
    audit_logger.addHandler(audit_handler)

    return audit_logger


def setup_logging(log_level: str = "INFO", log_dir: str = "logs", audit: bool = True) -> logging.Logger:
    """
    Configure logging for the package and return its logger.

    Every module logs through logging.getLogger(__name__), so configuring
    the package logger covers the engine, service, stores and API.

    Files:
        logs/repairx_lifecycle_YYYYMMDD_<START_HHMMSS>.log
        logs/repairx_audit_YYYYMMDD_<START_HHMMSS>.log  (when audit is on)

    Args:
        log_level (str): Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir (str): Directory for daily log files
        audit (bool): Also write the transition audit file

    Returns:
        logging.Logger: Configured package logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Prevent propagation to root logger (avoid duplicate logs)
    logger.propagate = False
    _reset_handlers(logger)

    formatter = logging.Formatter(_OPERATIONAL_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    file_handler = DailyRotatingFileHandler(log_dir=log_dir)
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if audit:
        audit_logger = setup_audit_logging(log_dir)
        audit_file = audit_logger.handlers[0].baseFilename
    else:
        audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
        _reset_handlers(audit_logger)
        audit_logger.setLevel(logging.NOTSET)
        audit_file = "disabled"

    logger.info(
        f"Logging started - level: {log_level}, log file: {file_handler.baseFilename}, "
        f"audit: {audit_file}"
    )

    return logger
