"""
Encryption helpers for ledger account secrets.

Secrets are sealed with AES-GCM under a key derived from the server secret
and the account's public key, so a ciphertext copied onto another account
row fails authentication.
"""

import base64
import hashlib
import secrets

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from notary.core.config import get_settings

NONCE_SIZE = 12


def _derive_key(public_key: str, server_secret: str | None = None) -> bytes:
    """Derive the account's encryption key from server secret + public key."""
    server_secret = server_secret if server_secret is not None else get_settings().secret_key
    combined = f"{server_secret}:ledger-account:{public_key}".encode()
    return hashlib.sha256(combined).digest()


def encrypt_secret(secret_key: str, public_key: str, server_secret: str | None = None) -> str:
    """Seal a secret seed; returns base64(nonce + ciphertext)."""
    nonce = secrets.token_bytes(NONCE_SIZE)
    aesgcm = AESGCM(_derive_key(public_key, server_secret))
    ciphertext = aesgcm.encrypt(nonce, secret_key.encode(), public_key.encode())
    return base64.b64encode(nonce + ciphertext).decode()


def decrypt_secret(sealed: str, public_key: str, server_secret: str | None = None) -> str:
    """
    Open a sealed secret seed.
    Raises cryptography.exceptions.InvalidTag if the data was tampered with.
    """
    raw = base64.b64decode(sealed)
    nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    aesgcm = AESGCM(_derive_key(public_key, server_secret))
    return aesgcm.decrypt(nonce, ciphertext, public_key.encode()).decode()
