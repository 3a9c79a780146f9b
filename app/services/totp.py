"""Time-based one-time passwords (RFC 6238 over RFC 4226 HOTP).

Pure functions over a base32 secret, a point in time and a submitted code.
Nothing here touches storage.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import io
import secrets
import struct
from datetime import datetime, timezone
from urllib.parse import quote, urlencode

import qrcode
from qrcode.constants import ERROR_CORRECT_M

PERIOD_SECONDS = 30
DIGITS = 6
SECRET_BYTES = 20  # 160 bits


def generate_secret(num_bytes: int = SECRET_BYTES) -> str:
    if num_bytes < SECRET_BYTES:
        raise ValueError("TOTP secrets must carry at least 160 bits")
    raw = secrets.token_bytes(num_bytes)
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def _decode_secret(secret: str) -> bytes:
    cleaned = secret.replace(" ", "").upper()
    padding = "=" * (-len(cleaned) % 8)
    return base64.b32decode(cleaned + padding, casefold=True)


def _timestamp(at: datetime | float | int | None) -> float:
    if at is None:
        return datetime.now(timezone.utc).timestamp()
    if isinstance(at, datetime):
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        return at.timestamp()
    return float(at)


def time_step(at: datetime | float | int | None = None) -> int:
    return int(_timestamp(at) // PERIOD_SECONDS)


def hotp(key: bytes, counter: int, digits: int = DIGITS) -> str:
    digest = hmac.new(key, struct.pack(">Q", counter), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    binary = struct.unpack(">I", digest[offset : offset + 4])[0] & 0x7FFFFFFF
    return str(binary % (10**digits)).zfill(digits)


def current_code(secret: str, at: datetime | float | int | None = None) -> str:
    return hotp(_decode_secret(secret), time_step(at))


def match_step(
    secret: str,
    code: str,
    at: datetime | float | int | None = None,
    window_steps: int = 2,
) -> int | None:
    """Return the step in ``[T - window, T + window]`` that ``code`` matches.

    All candidate steps are compared so the time taken does not depend on
    which step (if any) matched. Steps before the epoch are not candidates.
    """
    if not secret or code is None:
        return None
    code = str(code).strip()
    if len(code) != DIGITS or not code.isdigit():
        return None
    try:
        key = _decode_secret(secret)
    except (binascii.Error, ValueError):
        return None
    step = time_step(at)
    matched = None
    for counter in range(max(0, step - window_steps), step + window_steps + 1):
        candidate = hotp(key, counter)
        if hmac.compare_digest(candidate.encode(), code.encode()) and matched is None:
            matched = counter
    return matched


def verify(
    secret: str,
    code: str,
    at: datetime | float | int | None = None,
    window_steps: int = 2,
) -> bool:
    return match_step(secret, code, at, window_steps) is not None


def provisioning_uri(secret: str, account_label: str, issuer: str) -> str:
    label = quote(f"{issuer}:{account_label}", safe="@:")
    query = urlencode(
        {
            "secret": secret,
            "issuer": issuer,
            "algorithm": "SHA1",
            "digits": DIGITS,
            "period": PERIOD_SECONDS,
        },
        quote_via=quote,
    )
    return f"otpauth://totp/{label}?{query}"


def qr_data_url(data: str, box_size: int = 8, border: int = 2) -> str:
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_M,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"
