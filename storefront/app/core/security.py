import secrets

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac
from starlette.requests import HTTPConnection


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without short-circuiting on the first mismatch.

    Every character pair is XOR-ed into an accumulator, so the loop runs the
    full length regardless of where the inputs differ. Only a length mismatch
    returns early; length is not secret.

    Args:
        a: First string
        b: Second string

    Returns:
        True if both are strings with identical content, False otherwise
    """
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    if len(a) != len(b):
        return False

    result = 0
    for x, y in zip(a, b):
        result |= ord(x) ^ ord(y)
    return result == 0


def hmac_sha256_hex(message: str, secret: str) -> str:
    """Compute the hex HMAC-SHA256 of message keyed by secret.

    Args:
        message: Message to authenticate
        secret: Shared secret

    Returns:
        64 character lowercase hex digest
    """
    h = crypto_hmac.HMAC(secret.encode("utf-8"), hashes.SHA256())
    h.update(message.encode("utf-8"))
    return h.finalize().hex()


def generate_token_hex(nbytes: int = 32) -> str:
    """Generate a random hex token from a cryptographically secure source."""
    return secrets.token_hex(nbytes)


def generate_request_id() -> str:
    """Generate a unique request ID (16 random bytes, hex encoded)."""
    return secrets.token_hex(16)


def get_client_ip(request: HTTPConnection) -> str:
    """Get client IP address, considering proxy headers.

    Priority: CF-Connecting-IP, X-Real-IP, first X-Forwarded-For entry,
    then the socket peer address.
    """
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    if request.client and request.client.host:
        return request.client.host
    return "unknown"
