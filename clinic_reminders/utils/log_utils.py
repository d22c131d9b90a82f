import os
import logging

from .config import config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Outbound message audit trail, written to logs/notifications.log
notification_logger = logging.getLogger("notifications")


def configure_logging(logs_path: str = None, level: str = None) -> None:
    """Console logging plus the notifications audit file. Safe to call twice."""
    logs_path = logs_path or config.LOGS_PATH
    level = (level or config.LOG_LEVEL).upper()

    logging.basicConfig(level=level, format=LOG_FORMAT)

    # client libraries are chatty at INFO
    logging.getLogger("googleapiclient").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("twilio.http_client").setLevel(logging.WARNING)

    if not any(isinstance(h, logging.FileHandler) for h in notification_logger.handlers):
        os.makedirs(logs_path, exist_ok=True)
        fh = logging.FileHandler(os.path.join(logs_path, "notifications.log"), encoding="utf-8")
        fh.setFormatter(logging.Formatter("[%(asctime)s] [%(levelname)s] %(message)s"))
        notification_logger.addHandler(fh)
        notification_logger.setLevel(logging.INFO)
