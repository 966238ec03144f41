# propwatch/utils.py
"""Shared utilities: logging, retry decorator, clock and text helpers."""
import logging
import re
import time
import unicodedata
from datetime import datetime, timezone
from functools import wraps

from . import config


def get_logger(name=__name__):
    logging.basicConfig(
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        level=getattr(logging, config.LOG_LEVEL, logging.INFO)
    )
    return logging.getLogger(name)

logger = get_logger("propwatch")


def retry(exceptions, tries=3, delay=1, backoff=2, logger=logger, giveup=()):
    """Retry on `exceptions`, except subclasses listed in `giveup` which propagate at once."""
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            mtries, mdelay = tries, delay
            while mtries > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    if isinstance(e, giveup):
                        raise
                    logger.warning("Retryable error: %s, retrying in %s sec", e, mdelay)
                    time.sleep(mdelay)
                    mtries -= 1
                    mdelay *= backoff
            return f(*args, **kwargs)
        return f_retry
    return deco_retry


def utcnow() -> datetime:
    # naive UTC; SQLite does not round-trip tzinfo
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 86400


def remove_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(text) -> str:
    """Lowercase, strip diacritics and collapse whitespace. None gives ""."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", remove_diacritics(text).lower()).strip()
