"""
Webhook request authentication.

Senders sign each delivery with HMAC-SHA256 over "{timestamp}.{body}" and
send ``X-Timestamp`` (Unix epoch, milliseconds or seconds) and
``X-Signature: sha256=<hex digest>``. Checks are skipped when no secret is
configured. An optional client IP allowlist accepts addresses and CIDR
ranges.
"""

import hashlib
import hmac
import ipaddress
import math
import time

from fastapi import HTTPException, Request, status

from ldt_pipeline.observability.logger import get_logger

logger = get_logger(__name__)

SIGNATURE_PREFIX = "sha256="
# Epoch values above this are milliseconds
_MILLISECOND_THRESHOLD = 10 ** 11


class SignatureError(Exception):
    """Raised when a webhook signature is missing, stale or wrong."""
    pass


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    """
    Compute the signature header value for a delivery.

    Args:
        secret: Shared webhook secret
        timestamp: X-Timestamp header value
        body: Raw request body

    Returns:
        "sha256=<hex digest>"
    """
    digest = hmac.new(
        secret.encode("utf-8"),
        timestamp.encode("utf-8") + b"." + body,
        hashlib.sha256,
    ).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_signature(
    secret: str,
    timestamp: str | None,
    body: bytes,
    signature: str | None,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """
    Verify a delivery signature.

    Args:
        secret: Shared webhook secret
        timestamp: X-Timestamp header value
        body: Raw request body
        signature: X-Signature header value
        tolerance_seconds: Maximum accepted clock skew
        now: Current epoch seconds (defaults to time.time())

    Raises:
        SignatureError: If the headers are missing, the timestamp is outside
            the tolerance or the signature does not match
    """
    if not timestamp or not signature:
        raise SignatureError("Missing X-Timestamp or X-Signature header")

    try:
        sent_at = float(timestamp)
    except ValueError as e:
        raise SignatureError(f"Malformed X-Timestamp: {timestamp!r}") from e
    if not math.isfinite(sent_at):
        raise SignatureError(f"Malformed X-Timestamp: {timestamp!r}")
    if sent_at > _MILLISECOND_THRESHOLD:
        sent_at /= 1000.0

    now = time.time() if now is None else now
    if abs(now - sent_at) > tolerance_seconds:
        raise SignatureError("X-Timestamp outside the accepted window")

    expected = compute_signature(secret, timestamp, body)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8")):
        raise SignatureError("Signature mismatch")


def is_ip_allowed(client_ip: str | None, allowed: list[str]) -> bool:
    """
    Check a client address against an allowlist of IPs and CIDR ranges.

    An empty allowlist allows every client. IPv4-mapped IPv6 addresses are
    compared as IPv4.

    Examples:
        >>> is_ip_allowed("10.0.0.7", ["10.0.0.0/24"])
        True
        >>> is_ip_allowed("::ffff:10.0.0.7", ["10.0.0.7"])
        True
    """
    if not allowed:
        return True
    if not client_ip:
        return False

    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        address = address.ipv4_mapped

    for entry in allowed:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning(f"Ignoring malformed allowlist entry: {entry}")
    return False


async def verify_webhook_request(request: Request) -> bytes:
    """
    FastAPI dependency: authenticate a webhook delivery and return its body.

    Raises:
        HTTPException: 403 for a client outside the allowlist, 401 for a
            bad signature
    """
    settings = request.app.state.components.settings
    client_ip = request.client.host if request.client else None

    if not is_ip_allowed(client_ip, settings.allowed_ips):
        logger.warning(
            "Webhook access denied for IP",
            extra={"client_ip": client_ip, "path": request.url.path}
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied - IP not allowed")

    body = await request.body()

    if settings.webhook_secret:
        try:
            verify_signature(
                settings.webhook_secret,
                request.headers.get("X-Timestamp"),
                body,
                request.headers.get("X-Signature"),
                settings.signature_tolerance_seconds,
            )
        except SignatureError as e:
            logger.warning(
                f"Invalid webhook signature: {e}",
                extra={"client_ip": client_ip, "path": request.url.path}
            )
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e

    return body
