# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

import base64
import json
import socket
import time
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock, patch

import httpx
import pytest
from authlib.jose import JsonWebKey, jwt

from coreason_oidc.models import ClientConfig, DiscoveryDocument, JWKSet, TokenResponse

ISSUER = "https://idp.example"
CLIENT_ID = "client-123"
REDIRECT_URI = "https://app.example/callback"
KID = "key-1"

DISCOVERY = {
    "issuer": ISSUER,
    "authorization_endpoint": f"{ISSUER}/authorize",
    "token_endpoint": f"{ISSUER}/token",
    "userinfo_endpoint": f"{ISSUER}/userinfo",
    "registration_endpoint": f"{ISSUER}/register",
    "jwks_uri": f"{ISSUER}/jwks",
    "id_token_signing_alg_values_supported": ["RS256"],
}


@pytest.fixture(autouse=True)
def mock_dns_resolution() -> Generator[MagicMock, None, None]:
    """
    Globally patches socket.getaddrinfo to return a safe public IP by default,
    so SafeHTTPTransport never resolves the dummy test domains for real.
    """
    safe_response = [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("8.8.8.8", 443))]

    with patch("socket.getaddrinfo", return_value=safe_response) as mock:
        yield mock


def _route_url(url: httpx.URL) -> str:
    return f"{url.scheme}://{url.host}{url.path}"


class FakeProvider:
    """
    An httpx.MockTransport-backed identity provider.

    `routes` maps (method, url) to a callable producing a fresh response.
    Every request is recorded in `requests`.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = _route_url(request.url)
        route = self.routes.get((request.method, url))
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        return route(request)

    def add_json(self, method: str, url: str, body: Any, status_code: int = 200) -> None:
        self.routes[(method, url)] = lambda request: httpx.Response(status_code, json=body)

    def calls_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if _route_url(r.url) == url]


@pytest.fixture
def fake_provider() -> FakeProvider:
    fake = FakeProvider()
    fake.add_json("GET", f"{ISSUER}/.well-known/openid-configuration", DISCOVERY)
    return fake


@pytest.fixture(scope="session")
def rsa_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True)


@pytest.fixture(scope="session")
def public_jwk(rsa_key: Any) -> dict[str, Any]:
    jwk = dict(rsa_key.as_dict(is_private=False))
    jwk["kid"] = KID
    return jwk


@pytest.fixture
def jwks(public_jwk: dict[str, Any]) -> JWKSet:
    return JWKSet(keys=[public_jwk])


@pytest.fixture
def discovery() -> DiscoveryDocument:
    return DiscoveryDocument.model_validate(DISCOVERY)


@pytest.fixture
def client_config() -> ClientConfig:
    return ClientConfig(id=CLIENT_ID, redirect_uris=[REDIRECT_URI])


def id_token_claims(**overrides: Any) -> dict[str, Any]:
    now = int(time.time())
    claims = {
        "iss": ISSUER,
        "sub": "user-42",
        "aud": CLIENT_ID,
        "exp": now + 3600,
        "iat": now,
        "nonce": "nonce-abc",
    }
    claims.update(overrides)
    return {k: v for k, v in claims.items() if v is not None}


def sign_id_token(key: Any, claims: dict[str, Any], headers: dict[str, Any] | None = None) -> str:
    if headers is None:
        headers = {"alg": "RS256", "kid": KID}
    return jwt.encode(headers, claims, key).decode("utf-8")  # type: ignore[no-any-return]


def b64_json(data: dict[str, Any]) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode("utf-8")).rstrip(b"=").decode("ascii")


def unsigned_id_token(claims: dict[str, Any]) -> str:
    header = b64_json({"alg": "none"})
    payload = b64_json(claims)
    return f"{header}.{payload}."


def token_response(id_token: str, access_token: str = "access-xyz") -> TokenResponse:
    return TokenResponse(access_token=access_token, id_token=id_token, token_type="Bearer", expires_in=3600)
