from __future__ import annotations

import os
from hashlib import sha256

from Crypto.Cipher import AES

from .config import get_settings


NONCE_SIZE = 12
TAG_SIZE = 16


def _get_key() -> bytes:
    key_src = get_settings().enc_master_key.encode("utf-8")
    if len(key_src) >= 32:
        return key_src[:32]
    return sha256(key_src).digest()


def encrypt_secret(plaintext: str) -> str:
    """AES-256-GCM encrypt; result is hex(nonce + tag + ciphertext)."""
    key = _get_key()
    nonce = os.urandom(NONCE_SIZE)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext.encode("utf-8"))
    return (nonce + tag + ciphertext).hex()


def decrypt_secret(token_hex: str) -> str:
    """Inverse of encrypt_secret. Raises ValueError on tampering or a wrong master key."""
    raw = bytes.fromhex(token_hex)
    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise ValueError("ciphertext too short")
    nonce, tag, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:NONCE_SIZE + TAG_SIZE], raw[NONCE_SIZE + TAG_SIZE:]
    key = _get_key()
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    plaintext = cipher.decrypt_and_verify(ciphertext, tag)
    return plaintext.decode("utf-8")


def mask_secret(secret: str, visible: int = 4) -> str:
    if not secret:
        return ""
    return "••••••••" + secret[-visible:]
