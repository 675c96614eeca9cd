"""
Input Validation for ledger identifiers.

Pure validators for keys, hashes and network names, usable two ways:
- as Annotated Pydantic types on request bodies (raise ValueError -> 422)
- through the ensure_* helpers inside services (raise ValidationError)
"""

import re
from typing import Annotated

from pydantic import AfterValidator, BeforeValidator

from notary.core.errors import ValidationError


# =============================================================================
# Patterns
# =============================================================================

# Public keys: 'G' + 55 uppercase alphanumerics (56 total)
PUBLIC_KEY_PATTERN = re.compile(r"^G[A-Z0-9]{55}$")

# Secret seeds: 'S' + 55 uppercase alphanumerics (56 total)
SECRET_KEY_PATTERN = re.compile(r"^S[A-Z0-9]{55}$")

# SHA-256 document hashes and ledger transaction hashes
HASH_PATTERN = re.compile(r"^[a-fA-F0-9]{64}$")

NETWORKS = ("testnet", "mainnet")


# =============================================================================
# Pydantic Validators (use with Annotated)
# =============================================================================

def validate_public_key(value: str) -> str:
    """Validate ledger public key format."""
    if not PUBLIC_KEY_PATTERN.match(value):
        raise ValueError("Invalid Stellar public key format")
    return value


def validate_secret_key(value: str) -> str:
    """Validate ledger secret key format."""
    if not SECRET_KEY_PATTERN.match(value):
        raise ValueError("Invalid Stellar secret key format")
    return value


def validate_hash(value: str) -> str:
    """Validate a 64-character hexadecimal hash; normalized to lower case."""
    if not HASH_PATTERN.match(value):
        raise ValueError("Invalid hash format. Expected 64-character hexadecimal string")
    return value.lower()


def validate_network(value: str) -> str:
    """Validate network name."""
    if value not in NETWORKS:
        raise ValueError(f"Invalid network type. Must be one of: {', '.join(NETWORKS)}")
    return value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


PublicKey = Annotated[str, BeforeValidator(_strip), AfterValidator(validate_public_key)]
SecretKey = Annotated[str, BeforeValidator(_strip), AfterValidator(validate_secret_key)]
HexHash = Annotated[str, BeforeValidator(_strip), AfterValidator(validate_hash)]
Network = Annotated[str, BeforeValidator(_strip), AfterValidator(validate_network)]


# =============================================================================
# Service-level guards
# =============================================================================

def _ensure(validator, value: str, field: str) -> str:
    try:
        return validator(value)
    except (ValueError, TypeError) as exc:
        raise ValidationError(str(exc), details=[{"loc": [field], "msg": str(exc), "type": "value_error"}])


def ensure_public_key(value: str, field: str = "publicKey") -> str:
    return _ensure(validate_public_key, value, field)


def ensure_secret_key(value: str, field: str = "secretKey") -> str:
    return _ensure(validate_secret_key, value, field)


def ensure_hash(value: str, field: str = "documentHash") -> str:
    return _ensure(validate_hash, value, field)


def ensure_network(value: str, field: str = "network") -> str:
    return _ensure(validate_network, value, field)


__all__ = [
    "PUBLIC_KEY_PATTERN",
    "SECRET_KEY_PATTERN",
    "HASH_PATTERN",
    "NETWORKS",
    "validate_public_key",
    "validate_secret_key",
    "validate_hash",
    "validate_network",
    "PublicKey",
    "SecretKey",
    "HexHash",
    "Network",
    "ensure_public_key",
    "ensure_secret_key",
    "ensure_hash",
    "ensure_network",
]
