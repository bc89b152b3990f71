"""Tests for signed session tokens."""

import hashlib
import hmac
import json

import pytest
from jwt.utils import base64url_encode

from authcore.auth.tokens import (
    ERROR_EXPIRED,
    ERROR_FAILED,
    ERROR_FORMAT,
    ERROR_SIGNATURE,
    TokenCodec,
    ttl_to_seconds,
)
from authcore.errors import ConfigurationError
from tests.conftest import SIGNING_SECRET, run

NOW = 1_700_000_000


def _codec(settings, now=NOW):
    return TokenCodec(settings, clock=lambda: now)


def _flip(segment: str, index: int) -> str:
    replacement = "A" if segment[index] != "A" else "B"
    return segment[:index] + replacement + segment[index + 1:]


def _hand_signed(header: bytes, payload: bytes, secret: str = SIGNING_SECRET) -> str:
    signing_input = base64url_encode(header) + b"." + base64url_encode(payload)
    signature = hmac.new(secret.encode(), signing_input, hashlib.sha256).digest()
    return (signing_input + b"." + base64url_encode(signature)).decode()


class TestTtl:
    """Tests for lifetime parsing."""

    def test_known_lifetimes(self):
        assert ttl_to_seconds("1h") == 3600
        assert ttl_to_seconds("7d") == 604800

    def test_unknown_lifetime_defaults_to_seven_days(self):
        assert ttl_to_seconds("30m") == 604800
        assert ttl_to_seconds("") == 604800


class TestTokenCodec:
    """Tests for TokenCodec sign/verify."""

    def test_round_trip_adds_iat_and_exp(self, settings):
        codec = _codec(settings)
        payload = {"userId": "user_1", "email": "a@b.com", "displayName": "A", "role": "participant"}

        result = codec.decode(codec.encode(payload, "1h"))

        assert result.valid
        assert result.error is None
        assert result.payload == {**payload, "iat": NOW, "exp": NOW + 3600}

    def test_header_is_hs256_jwt(self, settings):
        import jwt

        token = _codec(settings).encode({"userId": "u"})
        header = jwt.get_unverified_header(token)
        assert header["alg"] == "HS256"
        assert header["typ"] == "JWT"
        assert token.count(".") == 2

    def test_unknown_ttl_gets_seven_days(self, settings):
        codec = _codec(settings)
        result = codec.decode(codec.encode({"userId": "u"}, "2w"))
        assert result.payload["exp"] - result.payload["iat"] == 604800

    def test_expired_token_rejected(self, settings):
        token = _codec(settings).encode({"userId": "u"}, "1h")

        later = _codec(settings, now=NOW + 3601).decode(token)

        assert not later.valid
        assert later.error == ERROR_EXPIRED

    def test_token_valid_at_exact_expiry(self, settings):
        token = _codec(settings).encode({"userId": "u"}, "1h")
        assert _codec(settings, now=NOW + 3600).decode(token).valid

    def test_wrong_secret_rejected(self, settings):
        token = _codec(settings).encode({"userId": "u"})
        other = settings.with_overrides(signing_secret="another-secret-that-is-long-enough-000000")

        result = _codec(other).decode(token)

        assert not result.valid
        assert result.error == ERROR_SIGNATURE

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d"])
    def test_malformed_structure(self, settings, token):
        result = _codec(settings).decode(token)
        assert not result.valid
        assert result.error == ERROR_FORMAT

    def test_non_string_token(self, settings):
        result = _codec(settings).decode(None)
        assert not result.valid
        assert result.error == ERROR_FORMAT

    @pytest.mark.parametrize("segment", [0, 1, 2], ids=["header", "payload", "signature"])
    def test_every_single_character_tamper_detected(self, settings, segment):
        codec = _codec(settings)
        parts = codec.encode({"userId": "u", "role": "participant"}).split(".")

        for index in range(len(parts[segment])):
            tampered = list(parts)
            tampered[segment] = _flip(parts[segment], index)
            result = codec.decode(".".join(tampered))
            assert not result.valid, f"change at {segment}:{index} accepted"
            assert result.error == ERROR_SIGNATURE

    def test_signature_trailing_bits_tamper_detected(self, settings):
        header, payload, signature = _codec(settings).encode({"userId": "u"}).split(".")
        # Only the high bits of the final character carry signature data
        last = signature[-1]
        alternatives = [c for c in "AEIMQUYcgkosw048" if c != last]

        tampered = ".".join([header, payload, signature[:-1] + alternatives[0]])

        assert _codec(settings).decode(tampered).error == ERROR_SIGNATURE

    def test_bad_payload_length_is_a_signature_failure(self, settings):
        header, payload, signature = _codec(settings).encode({"userId": "u"}).split(".")
        padded = payload + "A" * ((1 - len(payload)) % 4)
        assert len(padded) % 4 == 1

        result = _codec(settings).decode(".".join([header, padded, signature]))

        assert not result.valid
        assert result.error == ERROR_SIGNATURE

    @pytest.mark.parametrize("junk", ["!", "%", " ", "+"])
    def test_signature_outside_alphabet_fails_verification(self, settings, junk):
        header, payload, signature = _codec(settings).encode({"userId": "u"}).split(".")
        tampered = ".".join([header, payload, signature[:10] + junk + signature[10:]])

        result = _codec(settings).decode(tampered)

        assert not result.valid
        assert result.error == ERROR_FAILED

    def test_malformed_json_payload(self, settings):
        token = _hand_signed(b'{"alg":"HS256","typ":"JWT"}', b"not json at all")

        result = _codec(settings).decode(token)

        assert not result.valid
        assert result.error == ERROR_FAILED

    def test_hand_built_token_verifies(self, settings):
        payload = {"userId": "u", "iat": NOW, "exp": NOW + 60}
        token = _hand_signed(b'{"alg":"HS256","typ":"JWT"}', json.dumps(payload).encode())

        result = _codec(settings).decode(token)

        assert result.valid
        assert result.payload == payload

    def test_undecodable_signature(self, settings):
        header, payload, _ = _codec(settings).encode({"userId": "u"}).split(".")
        result = _codec(settings).decode(f"{header}.{payload}.c")
        assert not result.valid
        assert result.error == ERROR_FAILED

    def test_missing_secret_refused(self, settings):
        with pytest.raises(ConfigurationError):
            TokenCodec(settings.with_overrides(signing_secret=None))
        with pytest.raises(ConfigurationError):
            TokenCodec(settings.with_overrides(signing_secret="   "))

    def test_async_wrappers(self, settings):
        codec = _codec(settings)

        token = run(codec.sign({"userId": "u"}, "7d"))
        result = run(codec.verify(token))

        assert result.valid
        assert result.payload["exp"] == NOW + 604800
