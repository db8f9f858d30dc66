"""Token encryption at rest.

Marketplace access and refresh tokens are stored as versioned AES-GCM blobs:

    ENC:v1:<base64(nonce || ciphertext || tag)>

The key is derived from ``settings.secret_key`` with HKDF-SHA256, so no extra
environment variable is needed. ``decrypt`` passes through any value that does
not carry the prefix, which keeps plain-text rows readable.
"""

from __future__ import annotations

import base64
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from resale_sync.config import settings
from resale_sync.utils.logger import logger


_PREFIX = "ENC:v1:"
_NONCE_SIZE = 12  # 96-bit nonce recommended for AES-GCM
_KEY_SIZE = 32    # 256-bit AES key


def _get_key() -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=_KEY_SIZE,
        salt=None,
        info=b"marketplace-token-encryption",
    )
    return hkdf.derive(settings.secret_key.encode("utf-8"))


def is_encrypted(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith(_PREFIX)


def encrypt(plaintext: Optional[str]) -> Optional[str]:
    """Encrypt ``plaintext``; ``None`` stays ``None``."""

    if plaintext is None:
        return None

    nonce = os.urandom(_NONCE_SIZE)
    ct = AESGCM(_get_key()).encrypt(nonce, plaintext.encode("utf-8"), associated_data=None)
    return _PREFIX + base64.b64encode(nonce + ct).decode("ascii")


def decrypt(value: Optional[str]) -> Optional[str]:
    """Decrypt a value produced by :func:`encrypt`.

    Values without the ``ENC:v1:`` prefix are returned unchanged. A blob that
    fails authentication (wrong ``SECRET_KEY``, tampering) is logged and
    returned as-is; the marketplace will then reject it and the principal has
    to re-authorize.
    """

    if not is_encrypted(value):
        return value

    raw = base64.b64decode(value[len(_PREFIX):].encode("ascii"))
    if len(raw) <= _NONCE_SIZE:
        return value
    nonce, ct = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
    try:
        return AESGCM(_get_key()).decrypt(nonce, ct, associated_data=None).decode("utf-8")
    except InvalidTag:
        logger.error("Token decryption failed: authentication tag mismatch")
        return value
