import logging
import logging.config
import os

_RESET = "\x1b[0m"


class ColourizedFormatter(logging.Formatter):
    """Colours the level name for terminal output."""

    LEVEL_COLORS = {
        logging.DEBUG: "\x1b[90m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)

        plain = record.levelname
        record.levelname = f"{color}{plain}{_RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record
            record.levelname = plain


_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def get_logging_config() -> dict:
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_dir = os.getenv("LOG_DIR")
    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "default",
        },
    }
    root_handlers = ["console"]
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, "sms_ledger.log"),
            "formatter": "plain",
        }
        root_handlers.append("file")

    loggers: dict[str, dict] = {
        "": {
            "handlers": root_handlers,
            "level": log_level_name,
        },
        # Request logs from the OpenAI SDK are noisy at DEBUG
        "openai": {"level": "WARNING"},
        "httpx": {"level": "WARNING"},
    }
    for name in _SERVER_LOGGERS:
        loggers[name] = {
            "handlers": root_handlers,
            "level": "INFO",
            "propagate": False,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {
                "()": "sms_ledger.logger.ColourizedFormatter",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
            "plain": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
