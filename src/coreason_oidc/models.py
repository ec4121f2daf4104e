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
Data models for the coreason-oidc package.
"""

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, StrictStr


class ClientMeta(BaseModel):
    """
    Client metadata sent to the provider during dynamic registration
    (OpenID Connect Dynamic Client Registration 1.0, section 2).

    Only `redirect_uris` is mandatory. Fields left unset are not sent.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    redirect_uris: list[str] = Field(..., min_length=1)
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    token_endpoint_auth_method: str = "client_secret_post"
    application_type: str | None = None
    client_name: str | None = None
    contacts: list[str] | None = None
    logo_uri: str | None = None
    client_uri: str | None = None
    policy_uri: str | None = None
    tos_uri: str | None = None
    jwks_uri: str | None = None
    sector_identifier_uri: str | None = None
    subject_type: str | None = None
    id_token_signed_response_alg: str | None = None
    userinfo_signed_response_alg: str | None = None
    default_max_age: int | None = None
    require_auth_time: bool | None = None
    default_acr_values: list[str] | None = None
    initiate_login_uri: str | None = None
    request_uris: list[str] | None = None

    def to_registration_request(self) -> dict[str, Any]:
        """Serializes the metadata as the JSON registration request body."""
        return self.model_dump(exclude_none=True)


class ClientConfig(BaseModel):
    """
    The effective client identity used for every request to the provider.

    Immutable once the client facade has been constructed.

    Attributes:
        id (str): The client_id.
        secret (SecretStr | None): The client_secret, if one was issued. Protected from logging.
        response_types (list[str]): Response types requested in the authorization request.
        grant_types (list[str]): Grant types the client uses.
        redirect_uris (list[str]): Registered redirect URIs.
        token_endpoint_auth_method (str): How the client authenticates at the token endpoint.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., min_length=1)
    secret: SecretStr | None = None
    response_types: list[str] = Field(default_factory=lambda: ["code"])
    grant_types: list[str] = Field(default_factory=lambda: ["authorization_code"])
    redirect_uris: list[str] = Field(default_factory=list)
    token_endpoint_auth_method: str = "client_secret_post"

    @classmethod
    def from_registration(cls, response: dict[str, Any], meta: ClientMeta) -> "ClientConfig":
        """
        Merges a registration response with the metadata that was submitted.

        Server-assigned values win over the submitted ones.

        Args:
            response: The decoded registration response (must contain `client_id`).
            meta: The metadata that was sent.

        Returns:
            ClientConfig: The effective client configuration.
        """
        secret = response.get("client_secret")
        return cls(
            id=response["client_id"],
            secret=SecretStr(secret) if secret else None,
            response_types=response.get("response_types") or meta.response_types,
            grant_types=response.get("grant_types") or meta.grant_types,
            redirect_uris=response.get("redirect_uris") or meta.redirect_uris,
            token_endpoint_auth_method=response.get("token_endpoint_auth_method")
            or meta.token_endpoint_auth_method,
        )


class StaticClient(BaseModel):
    """A client that was registered out of band."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["static"] = "static"
    config: ClientConfig


class PendingRegistration(BaseModel):
    """A client that still has to be registered dynamically with the provider."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["register"] = "register"
    meta: ClientMeta


ClientSource = StaticClient | PendingRegistration


class DiscoveryDocument(BaseModel):
    """
    OpenID Provider Metadata from .well-known/openid-configuration.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: StrictStr = Field(..., description="The OIDC issuer URL.")
    authorization_endpoint: StrictStr = Field(..., description="The authorization endpoint URL.")
    token_endpoint: StrictStr = Field(..., description="The token endpoint URL.")
    jwks_uri: StrictStr = Field(..., description="The URL to the JWKS.")
    userinfo_endpoint: StrictStr | None = None
    registration_endpoint: StrictStr | None = None
    end_session_endpoint: StrictStr | None = None
    response_types_supported: list[str] = Field(default_factory=list)
    subject_types_supported: list[str] = Field(default_factory=list)
    id_token_signing_alg_values_supported: list[str] = Field(default_factory=list)
    scopes_supported: list[str] = Field(default_factory=list)
    claims_supported: list[str] = Field(default_factory=list)
    token_endpoint_auth_methods_supported: list[str] = Field(default_factory=list)
    grant_types_supported: list[str] = Field(default_factory=list)


class JWKSet(BaseModel):
    """An ordered JSON Web Key Set."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    keys: list[dict[str, Any]]

    def __len__(self) -> int:
        return len(self.keys)

    def find(self, kid: str | None) -> dict[str, Any] | None:
        """Returns the key whose `kid` equals the given one exactly, if any."""
        if kid is None:
            return None
        for key in self.keys:
            if key.get("kid") == kid:
                return key
        return None


class TokenResponse(BaseModel):
    """
    Response of the token endpoint for the authorization code grant.

    Attributes:
        access_token (str): The access token issued by the authorization server.
        id_token (str): The ID token.
        token_type (str): The type of the token (e.g. "Bearer").
        expires_in (int | None): The lifetime in seconds of the access token.
        refresh_token (str | None): The refresh token, if issued.
        scope (str | None): The granted scope, if it differs from the requested one.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    access_token: str
    id_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None


class Claim(BaseModel):
    """A single claim requested through the `claims` authorization parameter."""

    model_config = ConfigDict(frozen=True)

    name: str
    essential: bool = False


def _claims_section(section: Any) -> list[Claim]:
    if not isinstance(section, dict):
        return []
    return [
        Claim(name=name, essential=isinstance(value, dict) and value.get("essential") is True)
        for name, value in section.items()
    ]


class ClaimsRequest(BaseModel):
    """
    The `claims` request parameter split into ID token and userinfo claims,
    each classified as essential or voluntary.

    Parsing is lenient: a claim whose value is not an object (null, a string,
    a list) or whose `essential` member is anything but boolean true is
    classed as voluntary instead of being rejected.
    """

    model_config = ConfigDict(frozen=True)

    id_token: list[Claim] = Field(default_factory=list)
    userinfo: list[Claim] = Field(default_factory=list)

    @classmethod
    def from_json(cls, data: Any) -> "ClaimsRequest":
        if not isinstance(data, dict):
            return cls()
        return cls(id_token=_claims_section(data.get("id_token")), userinfo=_claims_section(data.get("userinfo")))

    @classmethod
    def from_string(cls, raw: str) -> "ClaimsRequest":
        return cls.from_json(json.loads(raw))


class AuthRequestParameters(BaseModel):
    """Parameters of an OIDC authorization request."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    redirect_uri: str
    response_type: str = "code"
    scope: list[str] = Field(default_factory=lambda: ["openid"])
    state: str
    nonce: str
    claims: dict[str, Any] | None = None


class ValidatedIdentity(BaseModel):
    """
    The outcome of a successful ID token validation.

    Attributes:
        claims (dict[str, Any]): The verified ID token claims.
        header (dict[str, Any]): The JOSE header of the ID token.
        token_response (TokenResponse): The token endpoint response the ID token came from.
    """

    model_config = ConfigDict(frozen=True)

    claims: dict[str, Any]
    header: dict[str, Any] = Field(default_factory=dict)
    token_response: TokenResponse

    @property
    def subject(self) -> str:
        return str(self.claims["sub"])

    def __repr__(self) -> str:
        # Claims carry PII and the token response carries credentials
        return (
            f"ValidatedIdentity(sub='<REDACTED>', "
            f"alg={self.header.get('alg')!r}, "
            f"claims=<{len(self.claims)} claims>)"
        )

    def __str__(self) -> str:
        return self.__repr__()
