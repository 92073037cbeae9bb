import json
import logging
import os


# Fields the relay passes through `extra=`.
EXTRA_FIELDS = ("prediction_id", "status", "polls", "elapsed", "client")


def setup_logging() -> None:
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level)
    if os.environ.get("JSON_LOGS", "0") == "1":
        logging.getLogger().handlers = [JSONLogHandler()]


class JSONLogHandler(logging.StreamHandler):
    def emit(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            msg = {
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            for key in EXTRA_FIELDS:
                if hasattr(record, key):
                    msg[key] = getattr(record, key)
            if record.exc_info:
                msg["exc_info"] = self.formatException(record.exc_info)
            self.stream.write(json.dumps(msg, default=str) + "\n")
            self.flush()
        except Exception:
            self.handleError(record)
