import json
import logging
import os
from typing import Optional

from colorama import Fore, Style
from colorama import init as colorama_init
from dotenv import load_dotenv

# Early .env load so DISABLE_CLOUD_TELEMETRY is known before importing any OTel
if os.path.isfile(".env"):
    load_dotenv(override=False)

_telemetry_disabled = os.getenv("DISABLE_CLOUD_TELEMETRY", "false").lower() == "true"

if not _telemetry_disabled:
    from opentelemetry import trace
    from opentelemetry.sdk._logs import LoggingHandler
    from utils.telemetry_config import is_azure_monitor_configured
else:
    trace = None
    LoggingHandler = None

    def is_azure_monitor_configured() -> bool:
        return False


colorama_init(autoreset=True)

# Define a new logging level named "KEYINFO" with a level of 25
KEYINFO_LEVEL_NUM = 25
logging.addLevelName(KEYINFO_LEVEL_NUM, "KEYINFO")


def keyinfo(self: logging.Logger, message, *args, **kws):
    if self.isEnabledFor(KEYINFO_LEVEL_NUM):
        self._log(KEYINFO_LEVEL_NUM, message, args, **kws)


logging.Logger.keyinfo = keyinfo

_CORRELATION_PREFIXES = ("session.", "job.", "backend.", "cache.", "turn.", "operation.")


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "name": record.name,
            "process": record.processName,
            "level": record.levelname,
            "trace_id": getattr(record, "trace_id", "-"),
            "span_id": getattr(record, "span_id", "-"),
            "session_id": getattr(record, "session_id", "-"),
            "job_id": getattr(record, "job_id", "-"),
            "operation_name": getattr(record, "operation_name", "-"),
            "component": getattr(record, "component", "-"),
            "message": record.getMessage(),
            "file": record.filename,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Custom span attributes copied by TraceLogFilter
        for attr_name in dir(record):
            if attr_name.startswith(("session_", "job_", "backend_", "cache_", "turn_")):
                value = getattr(record, attr_name)
                if isinstance(value, (str, int, float, bool)):
                    log_record[attr_name] = value

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record)


class PrettyFormatter(logging.Formatter):
    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.MAGENTA,
        "KEYINFO": Fore.BLUE,
    }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        level = record.levelname
        name = record.name
        msg = record.getMessage()

        color = self.LEVEL_COLORS.get(level, "")
        line = f"{Fore.WHITE}[{timestamp}]{Style.RESET_ALL} {color}{level}{Style.RESET_ALL} - {Fore.BLUE}{name}{Style.RESET_ALL}: {msg}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _explicit(record: logging.LogRecord, attr: str) -> Optional[str]:
    value = getattr(record, attr, None)
    return None if value in (None, "-") else value


class TraceLogFilter(logging.Filter):
    def filter(self, record):
        # explicit extra={"session_id": ...} wins over span attributes
        explicit_session = _explicit(record, "session_id")
        explicit_job = _explicit(record, "job_id")

        record.trace_id = "-"
        record.span_id = "-"
        record.operation_name = "-"
        record.component = "-"
        record.session_id = explicit_session or "-"
        record.job_id = explicit_job or "-"

        if _telemetry_disabled or trace is None:
            return True

        span = trace.get_current_span()
        context = span.get_span_context() if span else None
        if context and context.trace_id:
            record.trace_id = f"{context.trace_id:032x}"
        if context and context.span_id:
            record.span_id = f"{context.span_id:016x}"

        if span and span.is_recording():
            span_attributes = getattr(span, "attributes", None) or {}
            if not explicit_session:
                record.session_id = span_attributes.get("session.id", "-")
            if not explicit_job:
                record.job_id = span_attributes.get("job.id", "-")
            record.operation_name = span_attributes.get("operation.name", span.name)
            record.component = span_attributes.get("component", "-")

            # These become customDimensions in App Insights
            for key, value in span_attributes.items():
                if key.startswith(_CORRELATION_PREFIXES):
                    setattr(record, key.replace(".", "_"), value)

        return True


def set_span_correlation_attributes(
    session_id: Optional[str] = None,
    job_id: Optional[str] = None,
    user_id: Optional[str] = None,
    operation_name: Optional[str] = None,
    custom_attributes: Optional[dict] = None,
) -> None:
    """
    Set correlation attributes on the current span so they appear as
    customDimensions in Application Insights.
    """
    if _telemetry_disabled or trace is None:
        return

    span = trace.get_current_span()
    if not span or not span.is_recording():
        return

    if session_id:
        span.set_attribute("session.id", session_id)
        span.set_attribute("ai.session.id", session_id)
    if job_id:
        span.set_attribute("job.id", job_id)
    if user_id:
        span.set_attribute("user.id", user_id)
        span.set_attribute("ai.user.id", user_id)
    if operation_name:
        span.set_attribute("operation.name", operation_name)

    if custom_attributes:
        for key, value in custom_attributes.items():
            if isinstance(value, (str, int, float, bool)):
                span.set_attribute(key, value)


def log_with_correlation(
    logger: logging.Logger,
    level: int,
    message: str,
    session_id: Optional[str] = None,
    job_id: Optional[str] = None,
    user_id: Optional[str] = None,
    operation_name: Optional[str] = None,
    custom_attributes: Optional[dict] = None,
) -> None:
    """Log ``message`` after stamping correlation ids on the current span."""
    set_span_correlation_attributes(
        session_id=session_id,
        job_id=job_id,
        user_id=user_id,
        operation_name=operation_name,
        custom_attributes=custom_attributes,
    )
    extra = {}
    if session_id:
        extra["session_id"] = session_id
    if job_id:
        extra["job_id"] = job_id
    logger.log(level, message, extra=extra)


def get_logger(
    name: str = "avatar",
    level: Optional[int] = None,
    include_stream_handler: bool = True,
) -> logging.Logger:
    logger = logging.getLogger(name)

    if level is not None or logger.level == 0:
        logger.setLevel(level or logging.INFO)

    is_production = os.environ.get("ENV", "dev").lower() == "prod"

    has_azure_handler = LoggingHandler is not None and any(
        isinstance(h, LoggingHandler) for h in logger.handlers
    )
    if (
        not has_azure_handler
        and LoggingHandler is not None
        and is_azure_monitor_configured()
    ):
        logger.addHandler(LoggingHandler(level=logging.INFO))
        logger.debug(f"Azure Monitor LoggingHandler attached to logger: {name}")

    if not any(isinstance(f, TraceLogFilter) for f in logger.filters):
        logger.addFilter(TraceLogFilter())

    if include_stream_handler and not any(
        type(h) is logging.StreamHandler for h in logger.handlers
    ):
        sh = logging.StreamHandler()
        sh.setFormatter(JsonFormatter() if is_production else PrettyFormatter())
        sh.addFilter(TraceLogFilter())
        logger.addHandler(sh)

    return logger
