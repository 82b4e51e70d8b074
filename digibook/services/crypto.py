"""
Password Encryption for Exports

A password-derived key (PBKDF2-HMAC-SHA256) feeds AES-GCM-256. The
envelope is plain JSON so it survives copy and paste:

    {
      "encrypted": true,
      "version": 1,
      "payload": "<base64 ciphertext + tag>",
      "kdf": {"algo": "PBKDF2-SHA256", "salt": "<base64>", "iterations": 100000},
      "cipher": {"algo": "AES-GCM-256", "iv": "<base64>"}
    }

A wrong password fails GCM authentication and surfaces as
BadPasswordError. Anything that is not a well-formed envelope is
MalformedError, so callers can tell the two apart.
"""

import base64
import binascii
import json
import os
from typing import Any, Optional

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from digibook.config import get_settings
from digibook.errors import BadPasswordError, MalformedError


logger = structlog.get_logger(__name__)

KDF_ALGORITHM = "PBKDF2-SHA256"
CIPHER_ALGORITHM = "AES-GCM-256"
ENVELOPE_VERSION = 1
KEY_BYTES = 32
MIN_ITERATIONS = 100_000


def derive_key(password: str, salt: bytes, iterations: int) -> bytes:
    """256-bit key from a password."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(password.encode("utf-8"))


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: Any, field: str) -> bytes:
    if not isinstance(value, str):
        raise MalformedError(f"Encrypted envelope field {field} must be base64 text")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedError(f"Encrypted envelope field {field} is not valid base64") from e


def is_encrypted_envelope(document: Any) -> bool:
    return isinstance(document, dict) and document.get("encrypted") is True


def encrypt_text(
    plaintext: str,
    password: str,
    iterations: Optional[int] = None,
) -> dict[str, Any]:
    """Encrypt text into an envelope dict."""
    if not password:
        raise BadPasswordError("A password is required to encrypt an export")

    security = get_settings().security
    iterations = iterations or security.kdf_iterations
    if iterations < MIN_ITERATIONS:
        raise ValueError(f"PBKDF2 needs at least {MIN_ITERATIONS} iterations")

    salt = os.urandom(security.salt_bytes)
    iv = os.urandom(security.iv_bytes)
    key = derive_key(password, salt, iterations)
    ciphertext = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)

    return {
        "encrypted": True,
        "version": ENVELOPE_VERSION,
        "payload": _b64encode(ciphertext),
        "kdf": {"algo": KDF_ALGORITHM, "salt": _b64encode(salt), "iterations": iterations},
        "cipher": {"algo": CIPHER_ALGORITHM, "iv": _b64encode(iv)},
    }


def decrypt_text(envelope: Any, password: str) -> str:
    """
    Decrypt an envelope produced by encrypt_text.

    Raises:
        MalformedError: Not an envelope, unknown algorithms, bad encoding
        BadPasswordError: Authentication failed (wrong password or
            tampered ciphertext)
    """
    if isinstance(envelope, str):
        try:
            envelope = json.loads(envelope)
        except json.JSONDecodeError as e:
            raise MalformedError(f"Encrypted export is not valid JSON: {e}") from e

    if not is_encrypted_envelope(envelope):
        raise MalformedError("Not an encrypted Digibook export")

    kdf = envelope.get("kdf")
    cipher = envelope.get("cipher")
    if not isinstance(kdf, dict) or not isinstance(cipher, dict):
        raise MalformedError("Encrypted export is missing its kdf or cipher parameters")
    if kdf.get("algo") != KDF_ALGORITHM or cipher.get("algo") != CIPHER_ALGORITHM:
        raise MalformedError(
            f"Unsupported encryption: {kdf.get('algo')} / {cipher.get('algo')}"
        )

    iterations = kdf.get("iterations")
    if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
        raise MalformedError("Encrypted export has an invalid iteration count")

    salt = _b64decode(kdf.get("salt"), "kdf.salt")
    iv = _b64decode(cipher.get("iv"), "cipher.iv")
    ciphertext = _b64decode(envelope.get("payload"), "payload")
    if not iv:
        raise MalformedError("Encrypted export has an empty iv")

    key = derive_key(password or "", salt, iterations)
    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
    except InvalidTag as e:
        logger.warning("decrypt_failed", reason="authentication")
        raise BadPasswordError("Incorrect password or corrupted export") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedError("Decrypted export is not UTF-8 text") from e
