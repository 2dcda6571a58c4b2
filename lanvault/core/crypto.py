"""Key & cipher engine.

File bytes are sealed with AES-256-GCM under a random per-file key. The
ciphertext blob is self-describing::

    nonce (12 bytes) || tag (16 bytes) || ciphertext

so decryption needs nothing but the blob and the key. Device-to-device
messages use Curve25519 ``Box`` from PyNaCl.
"""

import base64
import binascii
import hashlib
import os
from typing import NamedTuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from nacl.exceptions import CryptoError as NaclCryptoError
from nacl.public import Box, PrivateKey, PublicKey

from lanvault.core.errors import KeyFormatError, TamperError

KEY_SIZE = 32  # AES-256
NONCE_SIZE = 12  # 96-bit GCM nonce
TAG_SIZE = 16
BOX_OVERHEAD = Box.NONCE_SIZE + 16
FINGERPRINT_LENGTH = 16

KeyLike = Union[str, bytes, bytearray]


class KeyPair(NamedTuple):
    public_key: str
    secret_key: str


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(value: str, what: str) -> bytes:
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
        raise KeyFormatError(f"Malformed {what}") from exc


def _coerce_key(key: KeyLike) -> bytes:
    if isinstance(key, str):
        raw = _unb64(key, "file key")
    elif isinstance(key, (bytes, bytearray)):
        raw = bytes(key)
    else:
        raise KeyFormatError("Malformed file key")
    if len(raw) != KEY_SIZE:
        raise KeyFormatError("Malformed file key")
    return raw


def generate_file_key() -> str:
    """Fresh 256-bit key from the OS CSPRNG, base64 encoded for the ledger."""
    return _b64(os.urandom(KEY_SIZE))


def encrypt(plaintext: bytes, key: KeyLike) -> bytes:
    raw_key = _coerce_key(key)
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(raw_key).encrypt(nonce, bytes(plaintext), None)
    # AESGCM appends the tag; the blob keeps it right after the nonce
    return nonce + sealed[-TAG_SIZE:] + sealed[:-TAG_SIZE]


def decrypt(blob: bytes, key: KeyLike) -> bytes:
    """Open a blob produced by :func:`encrypt`.

    Raises KeyFormatError for an unusable key or truncated blob and
    TamperError when the tag does not verify. Never returns partial output.
    """
    raw_key = _coerce_key(key)
    blob = bytes(blob)
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise KeyFormatError("Ciphertext blob too short")
    nonce = blob[:NONCE_SIZE]
    tag = blob[NONCE_SIZE:NONCE_SIZE + TAG_SIZE]
    body = blob[NONCE_SIZE + TAG_SIZE:]
    try:
        return AESGCM(raw_key).decrypt(nonce, body + tag, None)
    except InvalidTag as exc:
        raise TamperError() from exc


def generate_key_pair() -> KeyPair:
    secret = PrivateKey.generate()
    return KeyPair(public_key=_b64(bytes(secret.public_key)), secret_key=_b64(bytes(secret)))


def load_public_key(public_key: str) -> PublicKey:
    raw = _unb64(public_key, "public key")
    try:
        return PublicKey(raw)
    except NaclCryptoError as exc:
        raise KeyFormatError("Malformed public key") from exc


def _load_secret_key(secret_key: str) -> PrivateKey:
    raw = _unb64(secret_key, "secret key")
    try:
        return PrivateKey(raw)
    except NaclCryptoError as exc:
        raise KeyFormatError("Malformed secret key") from exc


def encrypt_for_peer(message: bytes, peer_public_key: str, own_secret_key: str) -> bytes:
    box = Box(_load_secret_key(own_secret_key), load_public_key(peer_public_key))
    # Box.encrypt draws a random nonce and prepends it
    return bytes(box.encrypt(bytes(message)))


def decrypt_from_peer(blob: bytes, peer_public_key: str, own_secret_key: str) -> bytes:
    box = Box(_load_secret_key(own_secret_key), load_public_key(peer_public_key))
    blob = bytes(blob)
    if len(blob) < BOX_OVERHEAD:
        raise KeyFormatError("Ciphertext blob too short")
    try:
        return box.decrypt(blob)
    except NaclCryptoError as exc:
        raise TamperError() from exc


def fingerprint(public_key: str) -> str:
    """Short, stable identity proof: truncated SHA-256 hex of the encoded key."""
    return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
