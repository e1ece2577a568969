"""
Unit tests for encryption and ICS URL helpers.
"""

import base64
import os

import pytest

from homes_calendar.crypto import (
    Cipher,
    ics_url_hash,
    mask_ics_url,
    normalize_ics_url,
    parse_encryption_key,
    validate_ics_url,
)
from homes_calendar.exceptions import ConfigurationError, ValidationError


class TestCipher:
    """Tests for AES-GCM encryption."""

    def test_encrypt_decrypt(self, cipher):
        secret = "https://p01-caldav.icloud.com/published/2/abc"
        assert cipher.decrypt(cipher.encrypt(secret)) == secret

    def test_random_iv(self, cipher):
        """Test encrypting twice gives different ciphertexts."""
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_wrong_key_fails(self, cipher):
        encrypted = cipher.encrypt("secret")
        with pytest.raises(ValueError):
            Cipher(os.urandom(32)).decrypt(encrypted)

    def test_truncated_payload_fails(self, cipher):
        with pytest.raises(ValueError):
            cipher.decrypt(base64.b64encode(b"short").decode())

    def test_bad_key_length(self):
        with pytest.raises(ConfigurationError):
            Cipher(b"too short")


class TestParseEncryptionKey:
    """Tests for key decoding."""

    def test_hex_key(self):
        assert parse_encryption_key("ab" * 32) == bytes.fromhex("ab" * 32)

    def test_base64_key(self):
        raw = os.urandom(32)
        assert parse_encryption_key(base64.b64encode(raw).decode()) == raw

    @pytest.mark.parametrize("value", ["", "abc", "zz" * 32])
    def test_invalid_keys(self, value):
        with pytest.raises(ConfigurationError):
            parse_encryption_key(value)


class TestIcsUrls:
    """Tests for URL normalisation, hashing and masking."""

    def test_webcal_becomes_https(self):
        assert normalize_ics_url("webcal://Example.COM/cal.ics/") == "https://example.com/cal.ics"

    def test_missing_scheme(self):
        assert normalize_ics_url("example.com/cal.ics") == "https://example.com/cal.ics"

    def test_query_kept(self):
        assert normalize_ics_url("https://example.com/feed?Token=AbC") == "https://example.com/feed?Token=AbC"

    def test_equivalent_links_hash_equal(self):
        """Test cosmetic differences do not create duplicate subscriptions."""
        assert ics_url_hash("webcal://example.com/cal.ics") == ics_url_hash("https://EXAMPLE.com/cal.ics/")
        assert ics_url_hash("https://example.com/a.ics") != ics_url_hash("https://example.com/b.ics")

    def test_mask_long_path(self):
        url = "webcal://p01-caldav.icloud.com/published/2/MTIzNDU2Nzg5"
        assert mask_ics_url(url) == "webcal://p01-caldav.icloud.com/published/.../****.ics"

    def test_mask_short_path(self):
        assert mask_ics_url("https://example.com/feeds/kid.ics") == "webcal://example.com/feeds/****"

    def test_mask_hides_token(self):
        assert "secret" not in mask_ics_url("https://example.com/feeds/kid.ics?token=secret")


class TestValidateIcsUrl:
    """Tests for subscription link validation."""

    def test_plain_ics_link(self):
        assert validate_ics_url("https://example.com/school.ics") is None

    def test_icloud_link_without_suffix(self):
        assert validate_ics_url("webcal://p01-caldav.icloud.com/published/2/abc") is None

    def test_unusual_link_warns(self):
        warning = validate_ics_url("https://example.com/calendar")
        assert warning is not None
        assert ".ics" in warning

    @pytest.mark.parametrize("value", [None, "", "   ", "ftp://example.com/a.ics", "example.com/a.ics"])
    def test_rejected(self, value):
        with pytest.raises(ValidationError):
            validate_ics_url(value)
