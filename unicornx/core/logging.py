import logging
import sys
from contextvars import ContextVar
from logging.config import dictConfig

from unicornx.config import settings

# request-id текущего HTTP-запроса, ставит LoggingMiddleware
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")

CTX_FIELDS = ("rid", "user_id", "session_id")


class CtxFilter(logging.Filter):
    """Добавляет безопасные поля, чтобы форматтер не падал, когда нет extra."""
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "rid"):
            record.rid = request_id_var.get()
        for k in ("user_id", "session_id"):
            if not hasattr(record, k):
                setattr(record, k, "-")
        return True


def setup_logging() -> None:
    """Базовая настройка логирования всего приложения."""
    level = settings.log_level.upper()

    if settings.log_json:
        formatter = {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(rid)s %(user_id)s %(session_id)s",
            "rename_fields": {"levelname": "lvl", "asctime": "ts"},
            "json_ensure_ascii": False,
        }
    else:
        formatter = {
            "format": (
                "%(asctime)s | %(levelname)5s | %(name)s | %(message)s "
                "| rid=%(rid)s user=%(user_id)s sess=%(session_id)s"
            ),
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }

    dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"ctx": {"()": CtxFilter}},
        "formatters": {"default": formatter},
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "stream": sys.stdout,
                "formatter": "default",
                "filters": ["ctx"],
            }
        },
        "root": {"level": level, "handlers": ["stdout"]},
        "loggers": {
            # SQL при отладке: LOG_SQL=INFO
            "sqlalchemy.engine": {"level": settings.log_sql.upper()},
            "uvicorn": {"level": level},
            "uvicorn.access": {"level": level},
            "apscheduler": {"level": "WARNING"},
            "stripe": {"level": "WARNING"},
            # наши модули
            "unicornx": {"level": level},
        },
    })
    logging.getLogger(__name__).info("logging_ready json=%s level=%s", settings.log_json, level)
