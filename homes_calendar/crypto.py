"""
Encryption utilities for sensitive integration data.

AES-256-GCM encryption of ICS subscription URLs and OAuth tokens, plus the
URL normalisation used to deduplicate subscriptions without storing the
plain URL.

Ciphertext format: base64(iv || auth_tag || ciphertext), 12-byte random IV
per record, 16-byte tag.
"""

import base64
import binascii
import hashlib
import logging
import os
import re
from typing import Optional
from urllib.parse import urlsplit

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from homes_calendar.config import Settings, get_settings
from homes_calendar.exceptions import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

IV_LENGTH = 12
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")
_ICS_SCHEME = re.compile(r"^(webcal|https?)://", re.IGNORECASE)


def parse_encryption_key(raw_key: str) -> bytes:
    """
    Decode an encryption key given as hex or base64.

    Raises:
        ConfigurationError: If the key is missing or not 32 bytes
    """
    if not raw_key:
        raise ConfigurationError(
            "ENCRYPTION_KEY environment variable is required for ICS URL encryption"
        )

    if _HEX_KEY.match(raw_key):
        key = bytes.fromhex(raw_key)
    elif len(raw_key) == 44 and raw_key.endswith("="):
        try:
            key = base64.b64decode(raw_key, validate=True)
        except binascii.Error as e:
            raise ConfigurationError(
                "ENCRYPTION_KEY is not valid base64", original_error=e
            )
    else:
        raise ConfigurationError(
            "ENCRYPTION_KEY must be 32 bytes (64 hex chars or 44 base64 chars)"
        )

    if len(key) != KEY_LENGTH:
        raise ConfigurationError(f"ENCRYPTION_KEY must be 32 bytes, got {len(key)}")

    return key


class Cipher:
    """
    AES-256-GCM cipher bound to one key.

    Construct once at startup and pass it to whatever needs it; a bad key
    fails here rather than on the first request.
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(f"Encryption key must be 32 bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Cipher":
        """Build a cipher from ``ENCRYPTION_KEY``."""
        settings = settings or get_settings()
        return cls(parse_encryption_key(settings.encryption_key))

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string; returns base64(iv + tag + ciphertext)."""
        iv = os.urandom(IV_LENGTH)
        # cryptography appends the tag to the ciphertext
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return base64.b64encode(iv + tag + ciphertext).decode("ascii")

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a value produced by ``encrypt``.

        Raises:
            ValueError: If the payload is truncated or fails authentication
        """
        combined = base64.b64decode(encrypted)
        if len(combined) < IV_LENGTH + AUTH_TAG_LENGTH:
            raise ValueError("Invalid encrypted data: too short")

        iv = combined[:IV_LENGTH]
        tag = combined[IV_LENGTH:IV_LENGTH + AUTH_TAG_LENGTH]
        ciphertext = combined[IV_LENGTH + AUTH_TAG_LENGTH:]

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise ValueError("Invalid encrypted data: authentication failed") from e
        return plaintext.decode("utf-8")


def hash_string(value: str) -> str:
    """SHA-256 hex digest, used to dedupe URLs without exposing them."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_ics_url(url: str) -> str:
    """
    Normalise an ICS URL before hashing or fetching.

    - webcal:// becomes https://
    - missing scheme becomes https://
    - trailing slashes removed
    - host lowercased (path and query are case-sensitive and kept)
    """
    normalized = url.strip()

    if normalized.lower().startswith("webcal://"):
        normalized = "https://" + normalized[len("webcal://"):]

    if not re.match(r"^https?://", normalized, re.IGNORECASE):
        normalized = "https://" + normalized

    normalized = normalized.rstrip("/")

    parts = urlsplit(normalized)
    if not parts.netloc:
        return normalized

    rebuilt = f"{parts.scheme.lower()}://{parts.netloc.lower()}{parts.path}"
    if parts.query:
        rebuilt += f"?{parts.query}"
    return rebuilt


def ics_url_hash(url: str) -> str:
    """Hash of the normalised URL; equal for cosmetically different links."""
    return hash_string(normalize_ics_url(url))


def mask_ics_url(url: str) -> str:
    """
    Mask an ICS URL for display.

    Shows e.g. ``webcal://p01-caldav.icloud.com/published/.../****.ics``.
    """
    parts = urlsplit(normalize_ics_url(url))
    if not parts.netloc:
        return "webcal://.../****.ics"

    segments = parts.path.split("/")
    if len(segments) <= 3:
        masked_path = "/".join(segments[:-1]) + "/****"
    else:
        masked_path = f"/{segments[1]}/.../****.ics"
    return f"webcal://{parts.netloc}{masked_path}"


def validate_ics_url(url: Optional[str]) -> Optional[str]:
    """
    Check that a string looks like a calendar subscription link.

    Returns:
        A warning message when the URL is acceptable but unusual, else None

    Raises:
        ValidationError: If the URL cannot be used
    """
    if not url or not url.strip():
        raise ValidationError("URL is required")

    trimmed = url.strip()
    if not _ICS_SCHEME.match(trimmed):
        raise ValidationError("URL must start with webcal://, https://, or http://")

    if not urlsplit(normalize_ics_url(trimmed)).netloc:
        raise ValidationError("Invalid URL format")

    lowered = trimmed.lower()
    # iCloud links often lack the .ics suffix but carry a publishing path
    if not lowered.endswith(".ics") and "/subscribe" not in lowered \
            and "/webcal" not in lowered and "/published" not in lowered:
        return "URL does not end with .ics. Make sure this is a calendar subscription link."
    return None
