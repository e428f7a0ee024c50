import hashlib

import pytest

from survey_gateway.auth.api_keys import APIKeyHasher, build_api_key_hasher
from survey_gateway.config.settings import AppSettings


def test_generated_secret_is_prefixed_and_hashed():
    hasher = APIKeyHasher(prefix="sgk_")
    issued = hasher.generate()

    assert issued.raw_secret.startswith("sgk_")
    assert issued.display_prefix == issued.raw_secret[:12]
    assert issued.hashed_secret == hashlib.sha256(issued.raw_secret.encode()).hexdigest()
    assert issued.raw_secret not in issued.hashed_secret
    assert hasher.verify(issued.raw_secret, issued.hashed_secret)
    assert not hasher.verify(issued.raw_secret + "x", issued.hashed_secret)


def test_secrets_are_unique():
    hasher = APIKeyHasher()
    assert len({hasher.generate().raw_secret for _ in range(20)}) == 20


def test_api_key_detection_uses_the_prefix():
    hasher = APIKeyHasher(prefix="sgk_")
    assert hasher.is_api_key("sgk_abc")
    assert not hasher.is_api_key("eyJhbGciOi.jwt.token")


def test_unknown_hash_algorithm_is_rejected():
    with pytest.raises(ValueError):
        APIKeyHasher(hashing_algorithm="rot13")


def test_hasher_follows_settings():
    settings = AppSettings.model_validate(
        {"security": {"api_keys": {"prefix": "test_", "hashing_algorithm": "sha512"}}}
    )
    hasher = build_api_key_hasher(settings)
    issued = hasher.generate()
    assert issued.raw_secret.startswith("test_")
    assert len(issued.hashed_secret) == 128
