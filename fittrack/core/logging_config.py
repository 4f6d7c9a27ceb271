import hashlib
import re
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from fittrack.core import settings


class SecurityFilter(logging.Filter):
    """Masks credentials, check-in codes and payment secrets in log records"""

    SENSITIVE_PATTERNS = [
        (r'eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*', '[JWT_TOKEN]'),
        (r'Bearer\s+[A-Za-z0-9._-]+', 'Bearer [TOKEN]'),
        (r'password["\s]*[:=]["\s]*[^,}\s]+', 'password: [HIDDEN]'),
        (r'secret["\s]*[:=]["\s]*[^,}\s]+', 'secret: [HIDDEN]'),
        # check-in URLs carry the raw QR token in ?t=
        (r'([?&]t=)[A-Za-z0-9_-]+', r'\1[QR_TOKEN]'),
        (r'(sk|rk|whsec)_(live|test)?_?[A-Za-z0-9]+', '[STRIPE_SECRET]'),
        (r'(pi|seti)_[A-Za-z0-9]+_secret_[A-Za-z0-9]+', '[CLIENT_SECRET]'),
    ]

    def __init__(self):
        super().__init__()
        self._compiled = [(re.compile(p, re.IGNORECASE), r) for p, r in self.SENSITIVE_PATTERNS]

    def filter(self, record):
        msg = record.getMessage()
        for pattern, replacement in self._compiled:
            msg = pattern.sub(replacement, msg)
        record.msg = msg
        record.args = None
        return True


def _level(name: str, default: int = logging.INFO) -> int:
    return getattr(logging, name, default)


def _formatter() -> logging.Formatter:
    if settings.LOG_FORMAT == "json":
        return logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"module": "%(name)s", "message": "%(message)s", '
            '"line": %(lineno)d, "function": "%(funcName)s"}'
        )
    return logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def setup_logging():
    """Configure console and rotating file logging from ``fittrack.core.settings``.

    Safe to call more than once; existing root handlers are replaced.
    """
    level = _level(settings.LOG_LEVEL)
    log_file_path = Path(settings.LOG_FILE_PATH)
    log_file_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = _formatter()
    security_filter = SecurityFilter() if settings.ENABLE_SECURITY_FILTER else None

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.handlers.RotatingFileHandler(log_file_path, maxBytes=10 * 1024 * 1024, backupCount=5),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        if security_filter is not None:
            handler.addFilter(security_filter)
        root_logger.addHandler(handler)

    logging.getLogger('sqlalchemy.engine').setLevel(_level(settings.SQL_LOG_LEVEL, logging.WARNING))
    # Stripe's client logs full request lines at INFO
    logging.getLogger('stripe').setLevel(logging.WARNING)

    logging.getLogger('fittrack').setLevel(level)
    logging.getLogger('fittrack.auth').setLevel(logging.INFO if settings.AUTH_LOG_EVENTS else logging.ERROR)

    root_logger.info(
        "Logging initialized level=%s sql=%s file=%s",
        settings.LOG_LEVEL,
        settings.SQL_LOG_LEVEL,
        log_file_path,
    )
    return root_logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"fittrack.{name}")


def _session_ref(session_id: Optional[str]) -> str:
    if not session_id:
        return "unknown"
    return hashlib.sha256(session_id.encode()).hexdigest()[:8]


def log_auth_event(event_type: str, username: Optional[str] = None,
                   session_id: Optional[str] = None, success: bool = True):
    """Log login, refresh and logout outcomes without exposing the session id"""
    auth_logger = get_logger("auth")
    outcome = "successful" if success else "failed"
    auth_logger.log(
        logging.INFO if success else logging.WARNING,
        f"Auth {event_type} {outcome} - user: {username or 'unknown'} session: #{_session_ref(session_id)}",
    )


def log_security_event(event_type: str, details: str, level: str = "WARNING"):
    """Log rejected access: role denials, bad check-in codes, forged webhooks"""
    get_logger("security").log(_level(level.upper(), logging.WARNING), f"Security event: {event_type} - {details}")
