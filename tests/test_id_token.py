# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

import time
from typing import Any

import pytest
from authlib.jose import JsonWebKey
from conftest import CLIENT_ID, KID, b64_json, id_token_claims, sign_id_token, token_response, unsigned_id_token
from pydantic import SecretStr

from coreason_oidc.exceptions import (
    AudienceMismatchError,
    InvalidSignatureError,
    IssuerMismatchError,
    KeyNotFoundError,
    MalformedTokenError,
    NonceMismatchError,
    TokenExpiredError,
)
from coreason_oidc.id_token import IDTokenValidator, parse_compact_jwt, resolve_signing_key
from coreason_oidc.models import ClientConfig, DiscoveryDocument, JWKSet


@pytest.fixture
def validator() -> IDTokenValidator:
    return IDTokenValidator(allowed_algorithms=["RS256"], pii_salt=SecretStr("test-salt"))


@pytest.fixture(scope="module")
def other_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


def _jwk(kid: str | None) -> dict[str, Any]:
    key: dict[str, Any] = {"kty": "RSA", "n": "abc", "e": "AQAB"}
    if kid is not None:
        key["kid"] = kid
    return key


class TestResolveSigningKey:
    def test_exact_kid_match(self) -> None:
        jwks = JWKSet(keys=[_jwk("a"), _jwk("b")])
        assert resolve_signing_key({"alg": "RS256", "kid": "b"}, jwks)["kid"] == "b"

    def test_single_key_fallback_without_kid(self) -> None:
        jwks = JWKSet(keys=[_jwk("only")])
        assert resolve_signing_key({"alg": "RS256"}, jwks)["kid"] == "only"

    def test_single_key_fallback_with_unmatched_kid(self) -> None:
        jwks = JWKSet(keys=[_jwk("only")])
        assert resolve_signing_key({"alg": "RS256", "kid": "rotated"}, jwks)["kid"] == "only"

    def test_single_key_without_kid_in_set(self) -> None:
        jwks = JWKSet(keys=[_jwk(None)])
        assert resolve_signing_key({"alg": "RS256", "kid": "x"}, jwks) == _jwk(None)

    def test_empty_set_fails(self) -> None:
        with pytest.raises(KeyNotFoundError):
            resolve_signing_key({"alg": "RS256", "kid": "a"}, JWKSet(keys=[]))

    def test_empty_set_without_kid_fails(self) -> None:
        with pytest.raises(KeyNotFoundError):
            resolve_signing_key({"alg": "RS256"}, JWKSet(keys=[]))

    def test_many_keys_no_match_fails(self) -> None:
        jwks = JWKSet(keys=[_jwk("a"), _jwk("b")])
        with pytest.raises(KeyNotFoundError):
            resolve_signing_key({"alg": "RS256", "kid": "c"}, jwks)

    def test_many_keys_without_kid_never_picks_first(self) -> None:
        jwks = JWKSet(keys=[_jwk("a"), _jwk("b")])
        with pytest.raises(KeyNotFoundError):
            resolve_signing_key({"alg": "RS256"}, jwks)


class TestParseCompactJwt:
    def test_wrong_segment_count(self) -> None:
        with pytest.raises(MalformedTokenError, match="3 segments"):
            parse_compact_jwt("a.b")

    def test_garbage_segments(self) -> None:
        with pytest.raises(MalformedTokenError):
            parse_compact_jwt("!!!.???.sig")

    def test_payload_must_be_object(self) -> None:
        token = f"{b64_json({'alg': 'RS256'})}.{b64_json([1, 2])}.sig"  # type: ignore[arg-type]
        with pytest.raises(MalformedTokenError, match="JSON objects"):
            parse_compact_jwt(token)

    def test_missing_alg(self) -> None:
        token = f"{b64_json({'typ': 'JWT'})}.{b64_json({'sub': 'x'})}.sig"
        with pytest.raises(MalformedTokenError, match="alg"):
            parse_compact_jwt(token)

    def test_returns_segments(self) -> None:
        header, claims, signature = parse_compact_jwt(unsigned_id_token({"sub": "x"}))
        assert header == {"alg": "none"}
        assert claims == {"sub": "x"}
        assert signature == ""


class TestValidate:
    def test_success(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        response = token_response(sign_id_token(rsa_key, id_token_claims()))

        identity = validator.validate(response, client_config, discovery, jwks, expected_nonce="nonce-abc")

        assert identity.subject == "user-42"
        assert identity.token_response is response
        assert identity.header["kid"] == KID

    def test_nonce_not_checked_when_not_expected(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        response = token_response(sign_id_token(rsa_key, id_token_claims(nonce=None)))
        assert validator.validate(response, client_config, discovery, jwks).subject == "user-42"

    @pytest.mark.parametrize(
        ("overrides", "expected_nonce", "error"),
        [
            ({"iss": "https://evil.example"}, "nonce-abc", IssuerMismatchError),
            ({"aud": "someone-else"}, "nonce-abc", AudienceMismatchError),
            ({"nonce": "replayed"}, "nonce-abc", NonceMismatchError),
            ({"nonce": None}, "nonce-abc", NonceMismatchError),
            ({"exp": int(time.time()) - 60}, "nonce-abc", TokenExpiredError),
        ],
    )
    def test_single_claim_mutation_is_fatal(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
        overrides: dict[str, Any],
        expected_nonce: str,
        error: type[Exception],
    ) -> None:
        response = token_response(sign_id_token(rsa_key, id_token_claims(**overrides)))
        with pytest.raises(error):
            validator.validate(response, client_config, discovery, jwks, expected_nonce=expected_nonce)

    def test_audience_list_containing_client(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        claims = id_token_claims(aud=["api://other", CLIENT_ID], azp=CLIENT_ID)
        response = token_response(sign_id_token(rsa_key, claims))
        assert validator.validate(response, client_config, discovery, jwks).claims["azp"] == CLIENT_ID

    def test_foreign_authorized_party(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        claims = id_token_claims(aud=[CLIENT_ID, "other"], azp="other")
        response = token_response(sign_id_token(rsa_key, claims))
        with pytest.raises(AudienceMismatchError, match="authorized party"):
            validator.validate(response, client_config, discovery, jwks)

    def test_leeway_accepts_recently_expired(
        self, rsa_key: Any, jwks: JWKSet, client_config: ClientConfig, discovery: DiscoveryDocument
    ) -> None:
        validator = IDTokenValidator(allowed_algorithms=["RS256"], pii_salt=SecretStr("s"), leeway=120)
        claims = id_token_claims(exp=int(time.time()) - 30)
        response = token_response(sign_id_token(rsa_key, claims))
        assert validator.validate(response, client_config, discovery, jwks).subject == "user-42"

    def test_missing_subject(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        response = token_response(sign_id_token(rsa_key, id_token_claims(sub=None)))
        with pytest.raises(MalformedTokenError, match="'sub'"):
            validator.validate(response, client_config, discovery, jwks)

    def test_signed_by_another_key(
        self,
        validator: IDTokenValidator,
        other_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        response = token_response(sign_id_token(other_key, id_token_claims()))
        with pytest.raises(InvalidSignatureError):
            validator.validate(response, client_config, discovery, jwks)

    def test_single_key_fallback_end_to_end(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        token = sign_id_token(rsa_key, id_token_claims(), headers={"alg": "RS256"})
        identity = validator.validate(token_response(token), client_config, discovery, jwks)
        assert identity.header.get("kid") != KID
        assert identity.subject == "user-42"

    def test_unknown_kid_with_several_keys(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        public_jwk: dict[str, Any],
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        jwks = JWKSet(keys=[public_jwk, _jwk("other")])
        token = sign_id_token(rsa_key, id_token_claims(), headers={"alg": "RS256", "kid": "unknown"})
        with pytest.raises(KeyNotFoundError):
            validator.validate(token_response(token), client_config, discovery, jwks)

    def test_algorithm_outside_allow_list(
        self,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        validator = IDTokenValidator(allowed_algorithms=["ES256"], pii_salt=SecretStr("s"))
        response = token_response(sign_id_token(rsa_key, id_token_claims()))
        with pytest.raises(InvalidSignatureError):
            validator.validate(response, client_config, discovery, jwks)

    def test_key_bound_to_other_algorithm(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        public_jwk: dict[str, Any],
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        jwks = JWKSet(keys=[{**public_jwk, "alg": "RS512"}])
        response = token_response(sign_id_token(rsa_key, id_token_claims()))
        with pytest.raises(InvalidSignatureError, match="bound to RS512"):
            validator.validate(response, client_config, discovery, jwks)

    def test_tenant_templated_issuer(
        self,
        validator: IDTokenValidator,
        rsa_key: Any,
        jwks: JWKSet,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
    ) -> None:
        templated = discovery.model_copy(
            update={"issuer": "https://login.microsoftonline.com/{tenantid}/v2.0"}
        )
        claims = id_token_claims(iss="https://login.microsoftonline.com/tenant-9/v2.0", tid="tenant-9")
        response = token_response(sign_id_token(rsa_key, claims))
        assert validator.validate(response, client_config, templated, jwks).claims["tid"] == "tenant-9"

        forged = id_token_claims(iss="https://login.microsoftonline.com/tenant-9/v2.0", tid="tenant-1")
        with pytest.raises(IssuerMismatchError):
            validator.validate(token_response(sign_id_token(rsa_key, forged)), client_config, templated, jwks)


class TestUnsignedTokens:
    def test_unsigned_token_skips_key_resolution(
        self, validator: IDTokenValidator, client_config: ClientConfig, discovery: DiscoveryDocument
    ) -> None:
        response = token_response(unsigned_id_token(id_token_claims()))
        # An empty key set would fail resolution if it were attempted
        identity = validator.validate(response, client_config, discovery, JWKSet(keys=[]), "nonce-abc")
        assert identity.header["alg"] == "none"

    def test_unsigned_token_still_checks_claims(
        self, validator: IDTokenValidator, client_config: ClientConfig, discovery: DiscoveryDocument
    ) -> None:
        response = token_response(unsigned_id_token(id_token_claims(iss="https://evil.example")))
        with pytest.raises(IssuerMismatchError):
            validator.validate(response, client_config, discovery, JWKSet(keys=[]))

    def test_unsigned_token_refused_when_disabled(
        self, client_config: ClientConfig, discovery: DiscoveryDocument
    ) -> None:
        validator = IDTokenValidator(allowed_algorithms=["RS256"], pii_salt=SecretStr("s"), allow_unsigned=False)
        response = token_response(unsigned_id_token(id_token_claims()))
        with pytest.raises(InvalidSignatureError, match="not accepted"):
            validator.validate(response, client_config, discovery, JWKSet(keys=[]))

    def test_unsigned_token_with_signature_segment(
        self, validator: IDTokenValidator, client_config: ClientConfig, discovery: DiscoveryDocument
    ) -> None:
        response = token_response(unsigned_id_token(id_token_claims()) + "c2ln")
        with pytest.raises(MalformedTokenError, match="empty signature"):
            validator.validate(response, client_config, discovery, JWKSet(keys=[]))
