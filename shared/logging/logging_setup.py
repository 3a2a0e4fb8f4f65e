from datetime import datetime
from pytz import timezone
import logging.config
import logging
import os
from logging import Logger


debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.INFO if not debug_mode else logging.DEBUG

# Supported ANSI color names for the color= parameter
_ANSI_RESET = "\033[0m"
_COLOR_MAP: dict[str, str] = {
    "cyan":    "\033[36m",
    "green":   "\033[32m",
    "yellow":  "\033[33m",
    "red":     "\033[31m",
    "magenta": "\033[35m",
    "blue":    "\033[34m",
    "white":   "\033[37m",
}

# Job lifecycle events get a fixed color on the console
_EVENT_COLORS: dict[str, str] = {
    "claimed": "cyan",
    "completed": "green",
    "retry": "yellow",
    "failed": "red",
    "reclaimed": "magenta",
}


class PipelineFormatter(logging.Formatter):
    """Formatter with timezone-aware timestamps and a level marker for warnings and errors."""

    def __init__(self, tz_name, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, self.tz)
        return dt.strftime(datefmt) if datefmt else dt.isoformat()

    def format(self, record):
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            # broken %-args from a third-party logger, keep the raw template
            message = str(record.msg)

        if record.levelno >= logging.ERROR:
            message = "⛔ " + message
        elif record.levelno == logging.WARNING:
            message = "⚠️ " + message

        # format a copy so the file handler sees the untouched record
        record = logging.makeLogRecord(record.__dict__)
        record.msg = message
        record.args = ()
        return super().format(record)


class ColoredFormatter(PipelineFormatter):
    """Console formatter with optional per-message ANSI color support.

    The color comes from an explicit ``color`` attribute (``color=<name>`` on
    :class:`ColorLogger` methods) or, failing that, from a ``job_event``
    attribute mapped through the job lifecycle palette.
    """

    def format(self, record) -> str:
        line = super().format(record)
        color_name = getattr(record, "color", None) or _EVENT_COLORS.get(getattr(record, "job_event", ""), None)
        ansi = _COLOR_MAP.get(color_name, "") if color_name else ""
        return f"{ansi}{line}{_ANSI_RESET}" if ansi else line


class ColorLogger:
    """Thin wrapper around :class:`logging.Logger` that adds optional
    ``color=`` and ``job_event=`` keyword arguments to all log methods.

    Usage::

        logger.info("plain message")
        logger.info("highlighted", color="cyan")
        logger.info("Job %s completed", job_id, job_event="completed")

    Colors are only applied in the console handler; the file handler always
    writes plain text.
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    def _with_extra(self, kwargs: dict, color: str | None, job_event: str | None) -> dict:
        """Inject color / job_event into the extra dict if provided."""
        if color is None and job_event is None:
            return kwargs
        extra = dict(kwargs.get("extra") or {})
        if color is not None:
            extra["color"] = color
        if job_event is not None:
            extra["job_event"] = job_event
        return {**kwargs, "extra": extra}

    def debug(self, msg, *args, color: str | None = None, job_event: str | None = None, **kwargs):
        self._logger.debug(msg, *args, **self._with_extra(kwargs, color, job_event))

    def info(self, msg, *args, color: str | None = None, job_event: str | None = None, **kwargs):
        self._logger.info(msg, *args, **self._with_extra(kwargs, color, job_event))

    def warning(self, msg, *args, color: str | None = None, job_event: str | None = None, **kwargs):
        self._logger.warning(msg, *args, **self._with_extra(kwargs, color, job_event))

    def error(self, msg, *args, color: str | None = None, job_event: str | None = None, **kwargs):
        self._logger.error(msg, *args, **self._with_extra(kwargs, color, job_event))

    def critical(self, msg, *args, color: str | None = None, job_event: str | None = None, **kwargs):
        self._logger.critical(msg, *args, **self._with_extra(kwargs, color, job_event))

    def exception(self, msg, *args, color: str | None = None, job_event: str | None = None, **kwargs):
        self._logger.exception(msg, *args, **self._with_extra(kwargs, color, job_event))

    def log(self, level: int, msg, *args, color: str | None = None, job_event: str | None = None, **kwargs):
        self._logger.log(level, msg, *args, **self._with_extra(kwargs, color, job_event))

    def __getattr__(self, name):
        """Delegate all other Logger attributes (e.g. setLevel, handlers) transparently."""
        return getattr(self._logger, name)


def setup_logging(logger_name: str = "theme_pipeline") -> ColorLogger:
    log_dir = os.path.join(os.getenv("ROOT_DIR", os.getcwd()), "logs")
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "()": PipelineFormatter,
                "format": "%(asctime)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "tz_name": tz_name,
            },
            "colored": {
                "()": ColoredFormatter,
                "format": "%(asctime)s - %(levelname)s - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
                "tz_name": tz_name,
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "colored",
                "level": loglevel,
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.FileHandler",
                "formatter": "standard",
                "level": loglevel,
                "filename": os.path.join(log_dir, "pipeline.log"),
                "encoding": "utf-8",
            },
        },
        "root": {
            "handlers": ["console", "file"],
            "level": loglevel,
        },
    }

    logging.config.dictConfig(logging_config)

    # Suppress httpx request logs and SQL echo unless in debug mode
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug_mode else logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug_mode else logging.WARNING)

    return ColorLogger(logging.getLogger(logger_name))
