"""Encryption helpers for social account credentials at rest."""

from __future__ import annotations

import base64
from functools import lru_cache
import hashlib
import hmac
import os

from src.core.config import get_settings


NONCE_BYTES = 16
MAC_BYTES = 32


def _derive_key(material: str) -> bytes:
    return hashlib.sha256(material.encode("utf-8")).digest()


@lru_cache(maxsize=1)
def get_token_key() -> bytes:
    settings = get_settings()
    seed = settings.token_encryption_key.strip() or settings.secret_key or "viral-dashboard-dev-token-key"
    return _derive_key(seed)


def reset_token_key_cache() -> None:
    get_token_key.cache_clear()


def _keystream(key: bytes, nonce: bytes, length: int) -> bytes:
    stream = bytearray()
    counter = 0
    while len(stream) < length:
        stream.extend(hmac.new(key, nonce + counter.to_bytes(4, "big"), digestmod=hashlib.sha256).digest())
        counter += 1
    return bytes(stream[:length])


def encrypt_token(secret_value: str) -> str:
    key = get_token_key()
    nonce = os.urandom(NONCE_BYTES)
    plaintext = secret_value.encode("utf-8")
    ciphertext = bytes(a ^ b for a, b in zip(plaintext, _keystream(key, nonce, len(plaintext))))
    mac = hmac.new(key, nonce + ciphertext, digestmod=hashlib.sha256).digest()
    return base64.urlsafe_b64encode(nonce + mac + ciphertext).decode("ascii")


def decrypt_token(ciphertext: str) -> str:
    key = get_token_key()
    try:
        blob = base64.urlsafe_b64decode(ciphertext.encode("ascii"))
    except (ValueError, UnicodeEncodeError) as exc:
        raise ValueError("Invalid encrypted token payload") from exc

    if len(blob) < NONCE_BYTES + MAC_BYTES:
        raise ValueError("Invalid encrypted token payload")
    nonce = blob[:NONCE_BYTES]
    mac = blob[NONCE_BYTES : NONCE_BYTES + MAC_BYTES]
    encrypted = blob[NONCE_BYTES + MAC_BYTES :]
    expected_mac = hmac.new(key, nonce + encrypted, digestmod=hashlib.sha256).digest()
    if not hmac.compare_digest(mac, expected_mac):
        raise ValueError("Invalid encrypted token payload")

    plaintext = bytes(a ^ b for a, b in zip(encrypted, _keystream(key, nonce, len(encrypted))))
    return plaintext.decode("utf-8")
