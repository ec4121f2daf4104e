# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

"""
IDTokenValidator component for validating ID token signatures and claims.
"""

import hashlib
import hmac
import json
from typing import Any, cast

from authlib.common.encoding import to_bytes, urlsafe_b64decode
from authlib.jose import JsonWebToken, JWTClaims
from authlib.jose.errors import (
    BadSignatureError,
    ExpiredTokenError,
    InvalidClaimError,
    InvalidTokenError,
    JoseError,
    MissingClaimError,
)
from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode
from pydantic import SecretStr

from coreason_oidc.exceptions import (
    AudienceMismatchError,
    CoreasonOIDCError,
    InvalidSignatureError,
    IssuerMismatchError,
    KeyNotFoundError,
    MalformedTokenError,
    NonceMismatchError,
    TokenExpiredError,
)
from coreason_oidc.models import ClientConfig, DiscoveryDocument, JWKSet, TokenResponse, ValidatedIdentity
from coreason_oidc.utils.logger import logger

tracer = trace.get_tracer(__name__)

UNSIGNED_ALGORITHM = "none"
TENANT_PLACEHOLDER = "{tenantid}"


def parse_compact_jwt(token: str) -> tuple[dict[str, Any], dict[str, Any], str]:
    """
    Splits a compact-serialized JWT into header, claims and the raw signature segment.

    No signature verification is performed.

    Raises:
        MalformedTokenError: If the token is not three base64url JSON segments.
    """
    parts = token.strip().split(".")
    if len(parts) != 3:
        raise MalformedTokenError(f"ID token must have 3 segments, got {len(parts)}")

    try:
        header = json.loads(urlsafe_b64decode(to_bytes(parts[0])))
        claims = json.loads(urlsafe_b64decode(to_bytes(parts[1])))
    except ValueError as e:
        raise MalformedTokenError(f"ID token is not valid base64url JSON: {e}") from e

    if not isinstance(header, dict) or not isinstance(claims, dict):
        raise MalformedTokenError("ID token header and payload must be JSON objects")
    if not isinstance(header.get("alg"), str):
        raise MalformedTokenError("ID token header has no 'alg'")
    return header, claims, parts[2]


def resolve_signing_key(header: dict[str, Any], jwks: JWKSet) -> dict[str, Any]:
    """
    Picks the JWK that must have signed the token.

    A `kid` in the header is matched exactly. When nothing matches (or the
    header has no `kid`) and the set holds exactly one key, that key is used,
    as OpenID Connect Core 1.0 section 10.1 permits. Any other situation is a
    failure; this never degrades to "first key" for larger sets.

    Raises:
        KeyNotFoundError: If no key can be resolved.
    """
    kid = header.get("kid")
    key = jwks.find(kid)
    if key is not None:
        return key

    if len(jwks) == 1:
        logger.debug(f"No JWK matches kid={kid!r}; using the only key in the set")
        return jwks.keys[0]

    raise KeyNotFoundError(f"Could not find JWK for kid={kid!r} among {len(jwks)} keys")


class IDTokenValidator:
    """
    Validates ID tokens against the provider's JWKS and the OIDC claim rules.

    Attributes:
        allowed_algorithms (list[str]): JWS algorithms accepted for signatures.
        leeway (int): Acceptable clock skew in seconds.
        allow_unsigned (bool): Whether tokens using the "none" algorithm are accepted.
    """

    def __init__(
        self,
        allowed_algorithms: list[str],
        pii_salt: SecretStr,
        leeway: int = 0,
        allow_unsigned: bool = True,
    ) -> None:
        """
        Initialize the IDTokenValidator.

        Args:
            allowed_algorithms: List of allowed JWT signing algorithms. REQUIRED.
            pii_salt: Salt for anonymizing subjects in logs. REQUIRED.
            leeway: Acceptable clock skew in seconds. Defaults to 0.
            allow_unsigned: Accept "none"-algorithm tokens from providers known to issue them.
        """
        self.allowed_algorithms = allowed_algorithms
        self.pii_salt = pii_salt
        self.leeway = leeway
        self.allow_unsigned = allow_unsigned
        # A dedicated instance rejects every algorithm outside the allow-list
        self.jwt = JsonWebToken(self.allowed_algorithms)

    def _anonymize(self, value: str) -> str:
        return hmac.new(
            self.pii_salt.get_secret_value().encode("utf-8"),
            value.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _verify_signature(self, token: str, header: dict[str, Any], jwk: dict[str, Any]) -> dict[str, Any]:
        key_alg = jwk.get("alg")
        if key_alg and key_alg != header["alg"]:
            raise InvalidSignatureError(f"JWK is bound to {key_alg}, token is signed with {header['alg']}")

        try:
            # Cast self.jwt to Any to bypass MyPy overload confusion or missing stubs
            verified = cast("Any", self.jwt).decode(token, jwk)
        except BadSignatureError as e:
            raise InvalidSignatureError(f"Invalid signature: {e}") from e
        except JoseError as e:
            raise InvalidSignatureError(f"Signature verification failed: {e}") from e
        except (ValueError, TypeError, KeyError) as e:
            # Authlib raises these when the JWK does not fit the algorithm
            raise InvalidSignatureError(f"Unusable signing key: {e}") from e
        return dict(verified)

    def _accept_unsigned_token(self, payload: dict[str, Any], signature: str, span: Span) -> dict[str, Any]:
        """
        The "none" algorithm path: no signature is checked at all.

        This is a trust downgrade that is only sound for providers known to
        issue unsigned tokens over a trusted channel, so it is always logged.
        """
        if not self.allow_unsigned:
            raise InvalidSignatureError("Unsigned ID tokens are not accepted")
        if signature:
            raise MalformedTokenError("Unsigned ID token must have an empty signature segment")

        logger.warning("Accepting unsigned ID token (alg=none); signature verification skipped")
        span.add_event("unsigned_id_token")
        return payload

    def _validate_claims(
        self,
        header: dict[str, Any],
        payload: dict[str, Any],
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
        expected_nonce: str | None,
    ) -> None:
        for name in ("iss", "sub", "aud", "exp"):
            if name not in payload:
                raise MalformedTokenError(f"ID token is missing the '{name}' claim")

        expected_issuer = discovery.issuer
        if TENANT_PLACEHOLDER in expected_issuer:
            # Multi-tenant endpoints publish a templated issuer
            expected_issuer = expected_issuer.replace(TENANT_PLACEHOLDER, str(payload.get("tid", "")))
        if payload["iss"] != expected_issuer:
            raise IssuerMismatchError(f"Issuer {payload['iss']!r} does not match {expected_issuer!r}")

        aud = payload["aud"]
        audiences = [aud] if isinstance(aud, str) else aud if isinstance(aud, list) else []
        if client_config.id not in audiences:
            raise AudienceMismatchError(f"ID token audience does not include client {client_config.id!r}")
        azp = payload.get("azp")
        if azp is not None and azp != client_config.id:
            raise AudienceMismatchError(f"ID token authorized party {azp!r} is not client {client_config.id!r}")

        claims = JWTClaims(payload, header, options={"exp": {"essential": True}})
        try:
            claims.validate(leeway=self.leeway)
        except ExpiredTokenError as e:
            raise TokenExpiredError(f"Token has expired: {e}") from e
        except InvalidTokenError as e:
            raise TokenExpiredError(f"Token is not yet valid: {e}") from e
        except (InvalidClaimError, MissingClaimError) as e:
            raise MalformedTokenError(f"Invalid claim: {e}") from e

        if expected_nonce is not None:
            nonce = payload.get("nonce")
            if not isinstance(nonce, str) or not hmac.compare_digest(
                nonce.encode("utf-8"), expected_nonce.encode("utf-8")
            ):
                raise NonceMismatchError("ID token nonce does not match the nonce of the authorization request")

    def validate(
        self,
        token_response: TokenResponse,
        client_config: ClientConfig,
        discovery: DiscoveryDocument,
        jwks: JWKSet,
        expected_nonce: str | None = None,
    ) -> ValidatedIdentity:
        """
        Validates the ID token of a token response.

        Emits an OpenTelemetry span `validate_id_token`.
        Sets attribute `enduser.id` (anonymized) on success.

        Args:
            token_response: The token endpoint response carrying the ID token.
            client_config: The client the token must be addressed to.
            discovery: The provider metadata holding the expected issuer.
            jwks: The provider's signing keys.
            expected_nonce: The nonce sent in the authorization request, if any.

        Returns:
            ValidatedIdentity: The verified claims wrapping the token response.

        Raises:
            MalformedTokenError: If the token cannot be parsed or lacks mandatory claims.
            KeyNotFoundError: If no signing key can be resolved.
            InvalidSignatureError: If the signature does not verify.
            IssuerMismatchError: If `iss` is not the discovery issuer.
            AudienceMismatchError: If the token is not addressed to this client.
            TokenExpiredError: If the token is expired.
            NonceMismatchError: If the nonce does not match.
        """
        with tracer.start_as_current_span("validate_id_token") as span:
            try:
                header, payload, signature = parse_compact_jwt(token_response.id_token)
                span.set_attribute("jwt.alg", header["alg"])

                if header["alg"] == UNSIGNED_ALGORITHM:
                    payload = self._accept_unsigned_token(payload, signature, span)
                else:
                    jwk = resolve_signing_key(header, jwks)
                    payload = self._verify_signature(token_response.id_token.strip(), header, jwk)

                self._validate_claims(header, payload, client_config, discovery, expected_nonce)
            except (MalformedTokenError, InvalidSignatureError) as e:
                logger.error(f"ID token validation failed: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise
            except CoreasonOIDCError as e:
                logger.warning(f"ID token validation failed: {type(e).__name__}: {e}")
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

            user_hash = self._anonymize(str(payload["sub"]))
            logger.info(f"ID token validated for user {user_hash}")
            span.set_attribute("enduser.id", user_hash)
            span.set_status(Status(StatusCode.OK))

            return ValidatedIdentity(claims=payload, header=header, token_response=token_response)
