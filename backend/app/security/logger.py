import logging
from logging.handlers import RotatingFileHandler

from app.core.settings import get_settings

# Create logger
captcha_logger = logging.getLogger("captcha")
captcha_logger.setLevel(logging.INFO)

# Storage failover messages go through a child logger and share the handler below.
storage_logger = logging.getLogger("captcha.storage")

# Prevent duplicate handlers
if not captcha_logger.handlers:
    # Rotating file handler: max 5 MB per file, keep 3 backups
    file_handler = RotatingFileHandler(get_settings().log_file, maxBytes=5*1024*1024, backupCount=3)
    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    file_handler.setFormatter(formatter)
    captcha_logger.addHandler(file_handler)


def log_captcha_event(action: str, **data) -> None:
    """Log a captcha lifecycle event as ``key=value`` pairs.

    Callers pass fingerprints and truncated tokens only; answers and raw IPs
    never reach the log.
    """
    details = " ".join(f"{key}={value}" for key, value in sorted(data.items()))
    captcha_logger.info(f"CAPTCHA_EVENT action={action} {details}".rstrip())


__all__ = ["captcha_logger", "storage_logger", "log_captcha_event"]
