"""
Tests for input validation of ledger identifiers and settings.
"""

import pytest
from pydantic import ValidationError as PydanticValidationError
from stellar_sdk import Keypair

from notary.core.config import Settings
from notary.core.errors import ValidationError
from notary.core.validation import (
    ensure_hash,
    ensure_network,
    ensure_public_key,
    ensure_secret_key,
    validate_hash,
)
from notary.models.schemas import AnchorDocumentRequest, BatchAnchorRequest


class TestIdentifiers:

    def test_real_keys_are_accepted(self):
        keypair = Keypair.random()
        assert ensure_public_key(keypair.public_key) == keypair.public_key
        assert ensure_secret_key(keypair.secret) == keypair.secret

    @pytest.mark.parametrize("value", ["", "G123", "S" + "A" * 55, "g" + "A" * 55, "G" + "A" * 56])
    def test_bad_public_keys(self, value):
        with pytest.raises(ValidationError) as exc_info:
            ensure_public_key(value)
        assert exc_info.value.status_code == 422

    def test_secret_must_start_with_s(self):
        with pytest.raises(ValidationError):
            ensure_secret_key(Keypair.random().public_key)

    def test_hash_is_lowercased(self):
        assert validate_hash("AB" * 32) == "ab" * 32

    @pytest.mark.parametrize("value", ["", "abc", "g" * 64, "a" * 63, "a" * 65])
    def test_bad_hashes(self, value):
        with pytest.raises(ValidationError):
            ensure_hash(value)

    def test_networks(self):
        assert ensure_network("testnet") == "testnet"
        assert ensure_network("mainnet") == "mainnet"
        with pytest.raises(ValidationError):
            ensure_network("futurenet")


class TestRequestSchemas:

    def test_camel_case_body(self):
        keypair = Keypair.random()
        body = AnchorDocumentRequest.model_validate({
            "sourcePublicKey": keypair.public_key,
            "sourceSecretKey": keypair.secret,
            "documentHash": "AB" * 32,
            "network": "testnet",
        })
        assert body.document_hash == "ab" * 32
        assert body.source_public_key == keypair.public_key

    def test_network_is_optional(self):
        keypair = Keypair.random()
        body = AnchorDocumentRequest.model_validate({
            "sourcePublicKey": keypair.public_key,
            "sourceSecretKey": keypair.secret,
            "documentHash": "ab" * 32,
        })
        assert body.network is None

    def test_batch_rejects_bad_hash(self):
        keypair = Keypair.random()
        with pytest.raises(PydanticValidationError):
            BatchAnchorRequest.model_validate({
                "sourcePublicKey": keypair.public_key,
                "sourceSecretKey": keypair.secret,
                "documentHashes": ["ab" * 32, "nope"],
            })


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.stellar_base_fee == 100
        assert settings.stellar_max_fee == 1000
        assert settings.stellar_polling_interval == 5.0
        assert settings.network_config("testnet").friendbot_url
        assert settings.network_config("mainnet").friendbot_url is None

    def test_base_fee_above_max_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            Settings(stellar_base_fee=2000, stellar_max_fee=1000)

    @pytest.mark.parametrize("field", ["stellar_polling_interval", "stellar_confirmation_timeout"])
    def test_non_positive_timing_is_rejected(self, field):
        with pytest.raises(PydanticValidationError):
            Settings(**{field: 0})

    def test_unknown_network(self):
        with pytest.raises(ValueError):
            Settings().network_config("devnet")
