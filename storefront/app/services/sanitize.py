"""Field-level input sanitizers.

Sanitizers filter by allow-list and cap length; validators return a bool or
a small result tuple. None of them raise on bad input: non-string values are
treated as empty.
"""

import re
import uuid
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

import bleach
from pydantic import BaseModel, Field, field_validator

from storefront.app.core.config import settings

MAX_EMAIL_LENGTH = 254  # RFC 5321
MAX_HANDLE_LENGTH = 50
MAX_NAME_LENGTH = 50
MAX_DISPLAY_NAME_LENGTH = 100
MAX_URL_PARAM_LENGTH = 200
MAX_PASSWORD_LENGTH = 128

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_HANDLE_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")
_TAG_RE = re.compile(r"<[^>]*>")
_SCRIPT_BLOCK_RE = re.compile(
    r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE
)
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.IGNORECASE)

HTML_ALLOWED_TAGS = frozenset({
    "p", "br", "strong", "em", "u", "s", "h1", "h2", "h3", "h4", "h5", "h6",
    "ul", "ol", "li", "blockquote", "a", "img", "div", "span", "table",
    "thead", "tbody", "tr", "td", "th", "hr", "pre", "code",
})
HTML_ALLOWED_ATTRIBUTES = [
    "href", "title", "alt", "src", "width", "height", "class", "id",
    "target", "rel", "colspan", "rowspan",
]
HTML_ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto", "tel"})


def sanitize_string(value, max_length: int = 1000) -> str:
    """Trim whitespace and cap length. Non-strings become ''."""
    if not isinstance(value, str):
        return ""
    return value.strip()[:max_length]


def validate_email(email) -> bool:
    if not email or not isinstance(email, str):
        return False
    if len(email) > MAX_EMAIL_LENGTH:
        return False
    if _CONTROL_CHARS_RE.search(email):
        return False
    return bool(_EMAIL_RE.match(email.strip().lower()))


def validate_and_sanitize_email(email) -> Tuple[bool, str]:
    """Return (valid, normalized email). The email is '' when invalid."""
    sanitized = sanitize_string(email, MAX_EMAIL_LENGTH).lower()
    valid = validate_email(sanitized)
    return valid, sanitized if valid else ""


def validate_handle(handle, min_length: int = 3, max_length: int = MAX_HANDLE_LENGTH) -> bool:
    if not handle or not isinstance(handle, str):
        return False
    trimmed = handle.strip()
    if not min_length <= len(trimmed) <= max_length:
        return False
    return bool(_HANDLE_RE.match(trimmed))


def sanitize_handle(handle) -> str:
    """Keep letters, digits, underscore and dash."""
    if not isinstance(handle, str):
        return ""
    return re.sub(r"[^a-zA-Z0-9_-]", "", handle)[:MAX_HANDLE_LENGTH]


def sanitize_name(name) -> str:
    """Keep letters, whitespace, apostrophes and hyphens."""
    if not isinstance(name, str):
        return ""
    return re.sub(r"[^a-zA-Z\s'-]", "", name).strip()[:MAX_NAME_LENGTH]


def sanitize_display_name(name) -> str:
    if not isinstance(name, str):
        return ""
    return re.sub(r"[^a-zA-Z0-9\s'.-]", "", name).strip()[:MAX_DISPLAY_NAME_LENGTH]


def _host_allowed(hostname: str, allowed_domains: Iterable[str], allow_subdomains: bool) -> bool:
    for domain in allowed_domains:
        domain = domain.lower()
        if hostname == domain:
            return True
        if allow_subdomains and hostname.endswith("." + domain):
            return True
    return False


def sanitize_url(
    url,
    allowed_domains: Optional[Iterable[str]] = None,
    allow_subdomains: bool = False,
) -> Optional[str]:
    """Return the URL if it is https with a real hostname, otherwise None.

    Args:
        url: URL to check
        allowed_domains: If given, the hostname must be one of these
        allow_subdomains: Also accept subdomains of allowed_domains
    """
    if not url or not isinstance(url, str):
        return None
    url = url.strip()
    if _CONTROL_CHARS_RE.search(url):
        return None
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
        # .port raises ValueError when the port is not a number in range
        if parts.port == 0:
            return None
    except ValueError:
        return None

    if parts.scheme.lower() != "https" or not hostname:
        return None
    if parts.username or parts.password:
        return None
    if allowed_domains is not None and not _host_allowed(
        hostname.lower(), allowed_domains, allow_subdomains
    ):
        return None
    return url


def get_safe_base_url(url: Optional[str] = None) -> str:
    """Return url if it points at an allowed site domain, else the configured default."""
    safe = sanitize_url(url, settings.allowed_site_domains)
    if safe is None:
        safe = settings.site_base_url
    return safe.rstrip("/")


def sanitize_url_param(value, max_length: int = MAX_URL_PARAM_LENGTH) -> str:
    if value is None or value == "":
        return ""
    return re.sub(r"[<>\"']", "", str(value).strip()[:max_length])


def is_valid_uuid(value) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    # uuid.UUID also accepts braces, urn prefixes and bare hex
    return len(value) == 36 and value.count("-") == 4


def validate_password(password, min_length: int = 8) -> Tuple[bool, List[str]]:
    """Return (valid, errors) for a candidate password."""
    if not password or not isinstance(password, str):
        return False, ["Password is required"]

    errors = []
    if len(password) < min_length:
        errors.append(f"Password must be at least {min_length} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append("Password is too long")
    return not errors, errors


def sanitize_html(html) -> str:
    """Clean rich text down to a tag/attribute allow-list."""
    if not html or not isinstance(html, str):
        return ""
    return bleach.clean(
        html,
        tags=HTML_ALLOWED_TAGS,
        attributes=HTML_ALLOWED_ATTRIBUTES,
        protocols=HTML_ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
    )


def strip_html(text, max_length: int = 500) -> str:
    """Reduce text to plain characters: no control characters, no tags."""
    if not text or not isinstance(text, str):
        return ""
    text = _CONTROL_CHARS_RE.sub("", text.strip())
    text = _TAG_RE.sub("", text)
    return text[:max_length]


class ContactForm(BaseModel):
    """Contact form submission, sanitized field by field."""

    name: str = Field(..., max_length=100)
    email: str = Field(..., max_length=MAX_EMAIL_LENGTH)
    body: str = Field(..., max_length=5000)

    @field_validator("name")
    @classmethod
    def clean_name(cls, v: str) -> str:
        v = strip_html(v, max_length=100)
        if not v.strip():
            raise ValueError("Name is required")
        return v

    @field_validator("email")
    @classmethod
    def clean_email(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Email is required")
        valid, sanitized = validate_and_sanitize_email(v)
        if not valid:
            raise ValueError("Please enter a valid email address")
        return sanitized

    @field_validator("body")
    @classmethod
    def clean_body(cls, v: str) -> str:
        v = sanitize_string(v, 5000)
        if not v:
            raise ValueError("Message is required")
        v = _SCRIPT_BLOCK_RE.sub("", v)
        v = _JS_PROTOCOL_RE.sub("", v)
        return _EVENT_HANDLER_RE.sub("", v)
