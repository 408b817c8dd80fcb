"""CSRF token issuance and validation.

Tokens are 32 random bytes, hex encoded. With a session secret the token is
signed: ``<64 hex value>.<64 hex HMAC-SHA256(value, secret)>``.

validate_csrf_token is pure and stateless. Single-use enforcement lives in
CSRFTokenManager: it removes the stored token from the session before
comparing, and records every accepted token server-side so a replayed
session cookie cannot bring it back.
"""

import re
import time
from typing import MutableMapping, Optional

from fastapi import Request

from storefront.app.core.config import settings
from storefront.app.core.logging import get_log_context, get_logger
from storefront.app.core.security import (
    constant_time_equals,
    generate_token_hex,
    get_client_ip,
    hmac_sha256_hex,
)
from storefront.app.exceptions import CSRFValidationError
from storefront.app.middleware.rate_limit import (
    RateLimitStore,
    RateLimitStoreError,
    get_rate_limiter,
)

logger = get_logger(__name__)

CSRF_FORM_FIELD = "csrf_token"
CSRF_HEADER = "x-csrf-token"
CSRF_SESSION_KEY = "csrf_token"
CSRF_USED_KEY_PREFIX = "csrf:"

_HEX_64 = re.compile(r"^[0-9a-f]{64}$")

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def generate_csrf_token(session_secret: Optional[str] = None) -> str:
    """Generate a cryptographically secure CSRF token.

    Args:
        session_secret: Secret for signing the token (optional)

    Returns:
        64 hex characters, followed by ``.`` and the 64 hex HMAC when signed
    """
    token = generate_token_hex(32)

    if session_secret:
        try:
            return f"{token}.{hmac_sha256_hex(token, session_secret)}"
        except Exception as e:
            logger.warning(f"CSRF token signing failed, using unsigned token: {e}")

    return token


def validate_csrf_token(
    submitted: Optional[str],
    expected: Optional[str],
    session_secret: Optional[str] = None,
) -> bool:
    """Check a submitted CSRF token against the issued one.

    Signed tokens (expected contains ``.`` and a secret is given) are split
    into value and signature; the values are compared in constant time and
    both signatures are checked against a freshly computed HMAC. Otherwise
    the full strings are compared in constant time.

    Never raises: missing, malformed or unverifiable tokens return False.
    """
    try:
        if not isinstance(submitted, str) or not isinstance(expected, str):
            return False
        if not submitted or not expected:
            return False

        if session_secret and "." in expected:
            expected_value, _, expected_sig = expected.partition(".")
            submitted_value, _, submitted_sig = submitted.partition(".")

            if not _HEX_64.match(expected_value) or not _HEX_64.match(expected_sig):
                logger.warning("Malformed signed CSRF token in session")
                return False

            recomputed = hmac_sha256_hex(expected_value, session_secret)

            # Evaluate all three so the outcome does not depend on which failed
            value_ok = constant_time_equals(submitted_value, expected_value)
            submitted_sig_ok = constant_time_equals(submitted_sig, recomputed)
            expected_sig_ok = constant_time_equals(expected_sig, recomputed)
            return value_ok & submitted_sig_ok & expected_sig_ok

        return constant_time_equals(submitted, expected)
    except Exception as e:
        logger.warning(f"CSRF validation error: {e}")
        return False


async def extract_submitted_token(request: Request) -> Optional[str]:
    """Read the submitted token from the csrf_token form field or the x-csrf-token header."""
    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(_FORM_CONTENT_TYPES):
        try:
            form = await request.form()
            value = form.get(CSRF_FORM_FIELD)
            if isinstance(value, str) and value:
                return value
        except Exception as e:
            logger.debug(f"Could not parse form body for CSRF token: {e}")

    return request.headers.get(CSRF_HEADER) or None


async def validate_csrf_request(
    request: Request,
    expected_token: Optional[str],
    session_secret: Optional[str] = None,
) -> bool:
    """Validate the token carried by request against expected_token."""
    submitted = await extract_submitted_token(request)
    return validate_csrf_token(submitted, expected_token, session_secret)


class CSRFTokenManager:
    """Issue, validate and consume CSRF tokens stored in a session mapping.

    One token is outstanding per session; issuing a new one replaces it.
    Accepted tokens are claimed in a store (the rate limiter's store by
    default) for the session lifetime; the session itself is a client-held
    cookie and an old copy can be sent again.
    """

    def __init__(
        self,
        session_secret: Optional[str] = None,
        session_key: str = CSRF_SESSION_KEY,
        store: Optional[RateLimitStore] = None,
    ):
        self._session_secret = session_secret
        self.session_key = session_key
        self._store = store

    @property
    def session_secret(self) -> Optional[str]:
        if self._session_secret is not None:
            return self._session_secret
        return settings.session_secret or None

    def issue(self, session: MutableMapping) -> str:
        token = generate_csrf_token(self.session_secret)
        session[self.session_key] = token
        return token

    def validate_and_consume(
        self, session: MutableMapping, submitted: Optional[str]
    ) -> bool:
        """Validate submitted against the stored token, removing it either way.

        A failed guess burns the token too. This only covers the session
        mapping; claim() rejects tokens replayed with an older cookie.
        """
        expected = session.pop(self.session_key, None)
        if expected is None:
            return False
        return validate_csrf_token(submitted, expected, self.session_secret)

    async def claim(self, token: str) -> bool:
        """Record token as used. Returns False if it was already claimed.

        Store outages follow the rate_limit_fail_closed setting.
        """
        store = self._store if self._store is not None else get_rate_limiter().store
        value = token.partition(".")[0]
        try:
            return await store.consume(
                f"{CSRF_USED_KEY_PREFIX}{value}",
                settings.session_max_age * 1000,
                int(time.time() * 1000),
            )
        except RateLimitStoreError as e:
            if settings.rate_limit_fail_closed:
                logger.warning(f"CSRF replay check unavailable ({e}), rejecting token")
                return False
            logger.warning(f"CSRF replay check unavailable ({e}), accepting token")
            return True


csrf_manager = CSRFTokenManager()


async def require_csrf(request: Request) -> None:
    """FastAPI dependency that consumes the session token or raises 403."""
    submitted = await extract_submitted_token(request)
    valid = csrf_manager.validate_and_consume(request.session, submitted)
    if not valid or not await csrf_manager.claim(submitted):
        logger.warning(
            "CSRF validation failed",
            extra=get_log_context(
                request_id=getattr(request.state, "request_id", None),
                client_ip=get_client_ip(request),
                path=request.url.path,
            ),
        )
        raise CSRFValidationError()
