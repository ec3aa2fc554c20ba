"""
Cryptographic primitives for protecting sensitive data.

Field encryption uses AES-256-CBC with a fresh IV per call and encodes the
result as ``hex(iv):hex(ciphertext)``. Every comparison of secret material
goes through ``hmac.compare_digest``.
"""
import hashlib
import hmac
import logging
import os
import secrets
import threading
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from config import settings
from utils.exceptions import DecryptionFailureError, MalformedCiphertextError

logger = logging.getLogger(__name__)

IV_LENGTH = 16
BLOCK_SIZE_BITS = algorithms.AES.block_size
SENSITIVE_USER_FIELDS = ("email", "phone", "ssn", "bank_account")


class FieldEncryption:
    """AES-256-CBC field encryption keyed by ``sha256(secret)``."""

    def __init__(self, secret: Optional[str] = None):
        if secret:
            self._key = hashlib.sha256(secret.encode("utf-8")).digest()
        else:
            self._key = os.urandom(32)
            logger.warning(
                "⚠️ [CRYPTO] No encryption secret configured; using an ephemeral key. "
                "Encrypted values will not survive a restart."
            )

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: Value to encrypt; may be empty

        Returns:
            ``hex(iv):hex(ciphertext)``
        """
        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext.encode("utf-8", errors="surrogatepass")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a value produced by :meth:`encrypt`.

        Args:
            ciphertext: ``hex(iv):hex(ciphertext)``

        Returns:
            The original plaintext

        Raises:
            MalformedCiphertextError: If the wire encoding is invalid
            DecryptionFailureError: If the padding or text check fails under this key
        """
        if not isinstance(ciphertext, str):
            raise MalformedCiphertextError("Ciphertext must be a string")

        parts = ciphertext.split(":")
        if len(parts) != 2:
            raise MalformedCiphertextError(
                f"Expected 2 colon-delimited segments, got {len(parts)}"
            )

        try:
            iv = bytes.fromhex(parts[0])
            body = bytes.fromhex(parts[1])
        except ValueError:
            raise MalformedCiphertextError("Ciphertext segments must be hex encoded")

        if len(iv) != IV_LENGTH:
            raise MalformedCiphertextError(f"IV must be {IV_LENGTH} bytes")
        if not body or len(body) % IV_LENGTH:
            raise MalformedCiphertextError("Ciphertext length is not a multiple of the block size")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(body) + decryptor.finalize()

        try:
            unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8", errors="surrogatepass")
        except (ValueError, UnicodeDecodeError) as e:
            logger.error(f"❌ [CRYPTO] Decryption failed: {type(e).__name__}")
            raise DecryptionFailureError()


_default_encryption: Optional[FieldEncryption] = None
_default_lock = threading.Lock()


def get_field_encryption() -> FieldEncryption:
    """Return the process-wide FieldEncryption seeded from settings."""
    global _default_encryption
    with _default_lock:
        if _default_encryption is None:
            _default_encryption = FieldEncryption(settings.encryption_secret)
        return _default_encryption


def encrypt_data(plaintext: str) -> str:
    return get_field_encryption().encrypt(plaintext)


def decrypt_data(ciphertext: str) -> str:
    return get_field_encryption().decrypt(ciphertext)


def hash_data(value: str) -> str:
    """One-way SHA-256 hex digest for equality lookups."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_secure_token(length: int = 32) -> str:
    """Return ``length`` random bytes, hex encoded."""
    return secrets.token_hex(length)


def timing_safe_equal(a: Any, b: Any) -> bool:
    """Constant-time string comparison; False for anything that is not a str."""
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def sign_payload(payload: str, secret: str) -> str:
    """HMAC-SHA256 hex signature of ``payload``."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(payload: str, signature: str, secret: str) -> bool:
    """
    Verify an HMAC-SHA256 request signature.

    Args:
        payload: Signed content
        signature: Hex signature supplied by the caller
        secret: Shared secret

    Returns:
        True only if the signature matches; never raises
    """
    if not isinstance(payload, str) or not signature or not secret:
        return False
    expected = sign_payload(payload, secret)
    if len(signature) != len(expected):
        return False
    return timing_safe_equal(expected, signature)


def generate_csrf_token() -> str:
    return generate_secure_token(32)


def validate_csrf_token(token: Any, stored: Any) -> bool:
    """Fail-closed CSRF comparison: empty, non-string or length-mismatched values are rejected."""
    if not token or not stored:
        return False
    if not isinstance(token, str) or not isinstance(stored, str):
        return False
    if len(token) != len(stored):
        return False
    return timing_safe_equal(token, stored)


def encrypt_user_data(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Encrypt the sensitive fields of a user record.

    Adds ``email_hash`` (hash of the lowercased email) so encrypted addresses
    can still be looked up. The input record is left untouched.
    """
    encrypted = dict(record)
    for field in SENSITIVE_USER_FIELDS:
        value = record.get(field)
        if value:
            encrypted[field] = encrypt_data(str(value))

    email = record.get("email")
    if email:
        encrypted["email_hash"] = hash_data(str(email).lower())
    return encrypted


def decrypt_user_data(record: Dict[str, Any]) -> Dict[str, Any]:
    decrypted = dict(record)
    for field in SENSITIVE_USER_FIELDS:
        value = record.get(field)
        if value:
            decrypted[field] = decrypt_data(value)
    return decrypted
