from __future__ import annotations

import re
from urllib.parse import urlsplit

_EMAIL_RE = re.compile(r"^[^\s@]+@([^\s@]+\.[^\s@]+)$")


def extract_email_domain(email: str) -> str:
    match = _EMAIL_RE.match(email.strip())
    if not match:
        raise ValueError("Invalid email format")
    return match.group(1).lower()


def extract_website_domain(website: str) -> str:
    candidate = website.strip()
    if not candidate:
        raise ValueError("Invalid URL format")
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    hostname = urlsplit(candidate).hostname
    if not hostname:
        raise ValueError("Invalid URL format")
    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


def verify_email_domain(email: str, website: str | None) -> bool:
    """Return True when the business email is hosted on the agency's website domain."""
    if not website:
        return False
    try:
        return extract_email_domain(email) == extract_website_domain(website)
    except ValueError:
        return False
