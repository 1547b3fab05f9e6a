from __future__ import annotations

import re

MAX_SEARCH_LENGTH = 100

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_SQL_COMMENT_RE = re.compile(r"--|/\*|\*/")
_DANGEROUS_KEYWORDS_RE = re.compile(
    r"\b(select|insert|update|delete|drop|union|exec|execute|script|javascript|vbscript|onload|onerror|onclick|alert)\b",
    re.IGNORECASE,
)
_DISALLOWED_CHARS_RE = re.compile(r"[^a-zA-Z0-9\s\-_.,'&]")
_WHITESPACE_RE = re.compile(r"\s+")

_SCRIPT_TAG_RE = re.compile(r"<script[\s\S]*?>[\s\S]*?</script>", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(
    r"\b(onerror|onclick|onload|onmouseover|onfocus|onblur|oninput|onchange|onsubmit)\s*=",
    re.IGNORECASE,
)
_JAVASCRIPT_URL_RE = re.compile(r"javascript:", re.IGNORECASE)


def sanitize_search_input(value: str) -> str:
    """Reduce free-text search input to characters found in business names."""
    sanitized = _CONTROL_CHARS_RE.sub("", value.strip())
    sanitized = _SQL_COMMENT_RE.sub("", sanitized)
    sanitized = _DANGEROUS_KEYWORDS_RE.sub("", sanitized)
    sanitized = _DISALLOWED_CHARS_RE.sub("", sanitized)
    sanitized = _WHITESPACE_RE.sub(" ", sanitized).strip()
    if len(sanitized) > MAX_SEARCH_LENGTH:
        sanitized = sanitized[:MAX_SEARCH_LENGTH].strip()
    return sanitized


def find_unsafe_message_content(content: str) -> str | None:
    if _SCRIPT_TAG_RE.search(content):
        return "Message contains invalid HTML (script tags not allowed)"
    if _EVENT_HANDLER_RE.search(content):
        return "Message contains invalid HTML (event handlers not allowed)"
    if _JAVASCRIPT_URL_RE.search(content):
        return "Message contains invalid content (javascript: URLs not allowed)"
    return None


def escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def mask_email(email: str | None) -> str | None:
    if not email or "@" not in email:
        return email
    local, _, domain = email.partition("@")
    visible = local[:2] if len(local) > 2 else local[:1]
    return f"{visible}***@{domain}"


def mask_phone(phone: str | None) -> str | None:
    if not phone:
        return phone
    digits = re.sub(r"\D", "", phone)
    if len(digits) < 4:
        return "***"
    return f"***-***-{digits[-4:]}"
