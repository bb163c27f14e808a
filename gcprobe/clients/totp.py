"""
GCProbe: Steam Guard Login Codes

Steam's mobile authenticator is TOTP with a twist: HMAC-SHA1 over the
30-second time step as usual, but the truncated value is rendered as five
characters from a 26-letter alphabet instead of decimal digits.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
import struct
import time

CODE_ALPHABET = "23456789BCDFGHJKMNPQRTVWXY"
CODE_LENGTH = 5
TIME_STEP_S = 30

_HEX_SECRET = re.compile(r"^[0-9a-fA-F]{40}$")


class TotpError(ValueError):
    """The shared secret could not be decoded."""


def decode_secret(shared_secret: str) -> bytes:
    """Accept the base64 form found in authenticator exports, or 40 hex characters."""
    secret = shared_secret.strip()
    if not secret:
        raise TotpError("shared secret is empty")
    if _HEX_SECRET.match(secret):
        return bytes.fromhex(secret)
    try:
        return base64.b64decode(secret, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TotpError(f"shared secret is not valid base64: {exc}") from exc


def generate_auth_code(
    shared_secret: str,
    timestamp: float | None = None,
    time_offset: float = 0.0,
) -> str:
    key = decode_secret(shared_secret)
    now = time.time() if timestamp is None else timestamp
    step = int(now + time_offset) // TIME_STEP_S

    digest = hmac.new(key, struct.pack(">Q", step), hashlib.sha1).digest()
    start = digest[19] & 0x0F
    value = struct.unpack(">I", digest[start : start + 4])[0] & 0x7FFFFFFF

    chars = []
    for _ in range(CODE_LENGTH):
        chars.append(CODE_ALPHABET[value % len(CODE_ALPHABET)])
        value //= len(CODE_ALPHABET)
    return "".join(chars)
