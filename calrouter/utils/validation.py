"""
utils/validation.py — Small input validators shared by models and services.

Called by: models/endpoints.py, services/reconciliation.py
"""

import re
from urllib.parse import urlparse

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email) -> bool:
    """Loose shape check: something@something.tld, no whitespace."""
    if not email or not isinstance(email, str):
        return False
    return bool(_EMAIL_RE.match(email.strip()))


def is_https_url(url) -> bool:
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme == "https" and bool(parsed.netloc)
