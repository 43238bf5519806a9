# -*- coding: utf-8 -*-
"""Key derivation, the session key container and the entry codec.

This module is stateless apart from the key objects it hands out. It does
**not** perform any database or network I/O.
"""
from __future__ import annotations

from typing import Any, Optional, Tuple
import base64
import binascii
import hmac
import json
import secrets

from argon2 import PasswordHasher
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecryptionFailure, ValidationFailure

# ---------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------

# Password hashing for the local identity provider only. The journal key is
# derived separately with PBKDF2 below.
PH = PasswordHasher(
    time_cost=2,
    memory_cost=102_400,
    parallelism=8,
    hash_len=32,
    salt_len=16,
)

PBKDF2_ITERATIONS = 600_000
SALT_LEN = 16
KEY_LEN = 32
IV_LEN = 12


# ---------------------------------------------------------------------
# Transport encoding
# ---------------------------------------------------------------------

def b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")

def b64decode(text: str) -> bytes:
    """Strict base64 decode; raises binascii.Error on malformed input."""
    return base64.b64decode(text, validate=True)


# ---------------------------------------------------------------------
# Key container
# ---------------------------------------------------------------------

class JournalKey:
    """AES-256-GCM key that lives in process memory only.

    The raw material has no accessor. Equality is a
    constant-time comparison, so two derivations can be compared without
    exporting either of them.
    """

    __slots__ = ("_material", "_aead")

    def __init__(self, material: bytes) -> None:
        if len(material) != KEY_LEN:
            raise ValidationFailure(f"Key must be {KEY_LEN} bytes")
        self._material: bytearray = bytearray(material)
        self._aead: Optional[AESGCM] = AESGCM(bytes(self._material))

    @property
    def destroyed(self) -> bool:
        return self._aead is None

    def _cipher(self) -> AESGCM:
        if self._aead is None:
            raise ValidationFailure("Key has been destroyed")
        return self._aead

    def seal(self, iv: bytes, plaintext: bytes) -> bytes:
        return self._cipher().encrypt(iv, plaintext, None)

    def open(self, iv: bytes, ciphertext: bytes) -> bytes:
        return self._cipher().decrypt(iv, ciphertext, None)

    def destroy(self) -> None:
        """Zero the key buffer and drop the cipher object."""
        for i in range(len(self._material)):
            self._material[i] = 0
        self._aead = None

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JournalKey):
            return NotImplemented
        if self.destroyed or other.destroyed:
            return False
        return hmac.compare_digest(self._material, other._material)

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"<JournalKey destroyed={self.destroyed}>"

    def __reduce_ex__(self, protocol: Any):
        raise TypeError("JournalKey cannot be serialized")

    def __copy__(self):
        raise TypeError("JournalKey cannot be copied")

    def __deepcopy__(self, memo: Any):
        raise TypeError("JournalKey cannot be copied")


class Session:
    """Derived key bound to an authenticated user.

    Closing the session zeroes the key; any later use raises
    ValidationFailure.
    """

    def __init__(self, user_id: str, email: str, key: JournalKey) -> None:
        self.user_id = user_id
        self.email = email
        self._key: Optional[JournalKey] = key

    @property
    def closed(self) -> bool:
        return self._key is None

    @property
    def key(self) -> JournalKey:
        if self._key is None:
            raise ValidationFailure("Session is closed")
        return self._key

    def close(self) -> None:
        if self._key is not None:
            self._key.destroy()
            self._key = None

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Session user_id={self.user_id!r} closed={self.closed}>"

    def __reduce_ex__(self, protocol: Any):
        raise TypeError("Session cannot be serialized")


# ---------------------------------------------------------------------
# KDF
# ---------------------------------------------------------------------

def generate_salt() -> str:
    """Return a fresh 128-bit salt in base64 transport encoding."""
    return b64encode(secrets.token_bytes(SALT_LEN))

def derive_key(password: str, salt: str) -> JournalKey:
    """Derive the journal key from *password* and the user's *salt*.

    PBKDF2-HMAC-SHA256, 600k iterations, 256-bit output. CPU bound; async
    callers should run it in a worker thread.
    """
    if not password:
        raise ValidationFailure("Password required")
    try:
        raw_salt = b64decode(salt)
    except (binascii.Error, ValueError) as exc:
        raise ValidationFailure("Salt is not valid base64") from exc
    if len(raw_salt) < SALT_LEN:
        raise ValidationFailure(f"Salt must be at least {SALT_LEN} bytes")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LEN,
        salt=raw_salt,
        iterations=PBKDF2_ITERATIONS,
    )
    material = bytearray(kdf.derive(password.encode("utf-8")))
    try:
        return JournalKey(bytes(material))
    finally:
        for i in range(len(material)):
            material[i] = 0


# ---------------------------------------------------------------------
# Entry codec (AEAD)
# ---------------------------------------------------------------------

def encrypt(plaintext: bytes, key: JournalKey) -> Tuple[str, str]:
    """Encrypt *plaintext* with a fresh random IV; return (ciphertext, iv)."""
    iv = secrets.token_bytes(IV_LEN)
    ct = key.seal(iv, plaintext)
    return b64encode(ct), b64encode(iv)

def decrypt(ciphertext: str, iv: str, key: JournalKey) -> bytes:
    """Authenticate and decrypt; raise DecryptionFailure on any mismatch."""
    try:
        raw_ct = b64decode(ciphertext)
        raw_iv = b64decode(iv)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionFailure("Malformed ciphertext or IV encoding") from exc
    if len(raw_iv) != IV_LEN:
        raise DecryptionFailure(f"IV must be {IV_LEN} bytes")
    try:
        return key.open(raw_iv, raw_ct)
    except InvalidTag as exc:
        raise DecryptionFailure("Authentication tag mismatch") from exc

def encrypt_json(obj: Any, key: JournalKey) -> Tuple[str, str]:
    data = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    return encrypt(data.encode("utf-8"), key)

def decrypt_json(ciphertext: str, iv: str, key: JournalKey) -> Any:
    plaintext = decrypt(ciphertext, iv, key)
    try:
        return json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise DecryptionFailure("Decrypted payload is not valid JSON") from exc
