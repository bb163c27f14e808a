"""
Tests for Steam Guard login code generation.
"""

from __future__ import annotations

import base64

import pytest

from gcprobe.clients.totp import (
    CODE_ALPHABET,
    CODE_LENGTH,
    TotpError,
    decode_secret,
    generate_auth_code,
)

SECRET = base64.b64encode(b"0123456789abcdefghij").decode()


class TestGenerateAuthCode:
    def test_shape(self):
        code = generate_auth_code(SECRET, timestamp=1_700_000_000)
        assert len(code) == CODE_LENGTH
        assert set(code) <= set(CODE_ALPHABET)

    def test_stable_within_time_step(self):
        # 1_700_000_010 and 1_700_000_019 share the same 30 s step
        assert generate_auth_code(SECRET, timestamp=1_700_000_010) == generate_auth_code(
            SECRET, timestamp=1_700_000_019
        )

    def test_offset_moves_the_step(self):
        base = generate_auth_code(SECRET, timestamp=1_700_000_010)
        shifted = generate_auth_code(SECRET, timestamp=1_700_000_010 - 30, time_offset=30)
        assert base == shifted

    def test_hex_and_base64_forms_agree(self):
        raw = b"0123456789abcdefghij"
        assert generate_auth_code(raw.hex(), timestamp=1_700_000_000) == generate_auth_code(
            SECRET, timestamp=1_700_000_000
        )


class TestDecodeSecret:
    def test_base64(self):
        assert decode_secret(SECRET) == b"0123456789abcdefghij"

    @pytest.mark.parametrize("secret", ["", "   ", "not base64!!"])
    def test_invalid_secret_raises(self, secret):
        with pytest.raises(TotpError):
            decode_secret(secret)
