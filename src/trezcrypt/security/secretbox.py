"""Authenticated symmetric encryption of a whole buffer under a 32-byte secret.

Uses libsodium's ``crypto_secretbox`` (XSalsa20-Poly1305) through PyNaCl.
Sealed layout: ``nonce (24 bytes) || ciphertext (len(plaintext) + 16 byte tag)``.
"""
from __future__ import annotations

import nacl.secret
import nacl.utils


KEY_SIZE = nacl.secret.SecretBox.KEY_SIZE
NONCE_SIZE = nacl.secret.SecretBox.NONCE_SIZE
MAC_SIZE = nacl.secret.SecretBox.MACBYTES


def generate_secret() -> bytes:
    return nacl.utils.random(KEY_SIZE)


def seal(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt ``plaintext`` with a fresh random nonce and return ``nonce || ciphertext``."""
    box = nacl.secret.SecretBox(key)
    nonce = nacl.utils.random(NONCE_SIZE)
    encrypted = box.encrypt(plaintext, nonce)
    return encrypted.nonce + encrypted.ciphertext


def open_box(sealed: bytes, key: bytes) -> bytes:
    """Decrypt a buffer produced by :func:`seal`.

    Raises :class:`nacl.exceptions.CryptoError` if the buffer was tampered with
    or the key is wrong; no partial plaintext is ever returned.
    """
    box = nacl.secret.SecretBox(key)
    nonce, ciphertext = sealed[:NONCE_SIZE], sealed[NONCE_SIZE:]
    return box.decrypt(ciphertext, nonce)
