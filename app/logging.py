import logging
import logging.config
from contextvars import ContextVar

from app.config import settings

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def configure_logging(level: str | None = None) -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_id": {"()": RequestIdFilter}},
            "formatters": {
                "keyvalue": {
                    "format": (
                        "ts=%(asctime)s level=%(levelname)s logger=%(name)s "
                        "request_id=%(request_id)s msg=%(message)s"
                    )
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "keyvalue",
                    "filters": ["request_id"],
                }
            },
            "root": {
                "handlers": ["console"],
                "level": (level or settings.log_level).upper(),
            },
        }
    )
