import logging
import sys

from hc_registry.settings import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def set_logger_and_children_level(logger_instance: logging.Logger, level: int) -> None:
    """Set the level of a logger, its handlers and every child logger below it."""
    logger_instance.setLevel(level)
    for handler in logger_instance.handlers:
        handler.setLevel(level)

    if not logger_instance.name or logger_instance.name == "root":
        return

    for name in list(logging.root.manager.loggerDict):
        if name.startswith(logger_instance.name + "."):
            child = logging.getLogger(name)
            child.setLevel(level)
            for handler in child.handlers:
                handler.setLevel(level)


def configure_logger(name: str = "hc_registry") -> logging.Logger:
    configured = logging.getLogger(name)
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    configured.setLevel(level)

    if not configured.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        configured.addHandler(handler)

    configured.propagate = False
    return configured


logger = configure_logger()

uvicorn_logger = logging.getLogger("uvicorn")
uvicorn_access_logger = logging.getLogger("uvicorn.access")
fastapi_logger = logging.getLogger("fastapi")

# Loggers whose level follows /change_log_level
MANAGED_LOGGERS = (logger, uvicorn_logger, uvicorn_access_logger, fastapi_logger)


def change_log_level(level_name: str) -> dict[str, dict]:
    """Apply ``level_name`` to every managed logger and report the resulting state."""
    level = logging.getLevelName(level_name)
    for managed in MANAGED_LOGGERS:
        set_logger_and_children_level(managed, level)

    return {
        managed.name: {
            "effective_level": logging.getLevelName(managed.getEffectiveLevel()),
            "handlers": [
                {"handler": repr(handler), "level": logging.getLevelName(handler.level)}
                for handler in managed.handlers
            ],
        }
        for managed in MANAGED_LOGGERS
    }
