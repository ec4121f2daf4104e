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
Authorization request construction (OpenID Connect Core 1.0, section 3.1.2.1).
"""

import json
from typing import Any
from urllib.parse import parse_qs, quote, urlencode, urlsplit

from coreason_oidc.models import AuthRequestParameters, ClientConfig

OPENID_SCOPE = "openid"


def normalize_scope(scope: str | list[str] | None) -> list[str]:
    """
    Turns a space-delimited string or a list into an ordered, de-duplicated
    scope list that always contains `openid`.
    """
    if scope is None:
        items: list[str] = []
    elif isinstance(scope, str):
        items = scope.split()
    else:
        items = [s for item in scope for s in item.split()]

    scopes = list(dict.fromkeys(items))
    if OPENID_SCOPE not in scopes:
        scopes.insert(0, OPENID_SCOPE)
    return scopes


def make_auth_parameters(
    client_config: ClientConfig,
    redirect_uri: str,
    nonce: str,
    state: str,
    scope: str | list[str] | None = None,
    claims: dict[str, Any] | None = None,
) -> AuthRequestParameters:
    return AuthRequestParameters(
        client_id=client_config.id,
        redirect_uri=redirect_uri,
        response_type=" ".join(client_config.response_types) or "code",
        scope=normalize_scope(scope),
        state=state,
        nonce=nonce,
        claims=claims,
    )


def to_query(params: AuthRequestParameters) -> str:
    """Serializes the parameters with percent-encoding (spaces as %20)."""
    pairs = [
        ("client_id", params.client_id),
        ("response_type", params.response_type),
        ("redirect_uri", params.redirect_uri),
        ("scope", " ".join(params.scope)),
        ("state", params.state),
        ("nonce", params.nonce),
    ]
    if params.claims is not None:
        pairs.append(("claims", json.dumps(params.claims, separators=(",", ":"))))
    return urlencode(pairs, quote_via=quote)


def build_auth_url(
    authorization_endpoint: str,
    client_config: ClientConfig,
    redirect_uri: str,
    nonce: str,
    state: str,
    scope: str | list[str] | None = None,
    claims: dict[str, Any] | None = None,
) -> str:
    """
    Builds the URL the user agent is redirected to.

    Args:
        authorization_endpoint: The provider's authorization endpoint.
        client_config: The client making the request.
        redirect_uri: Where the provider sends the user back to.
        nonce: Value bound into the ID token to prevent replay.
        state: Opaque value bound to the callback to prevent CSRF.
        scope: Requested scopes; `openid` is always included.
        claims: Optional `claims` request parameter (section 5.5).

    Returns:
        str: The authorization URL.
    """
    params = make_auth_parameters(client_config, redirect_uri, nonce, state, scope, claims)
    separator = "&" if urlsplit(authorization_endpoint).query else "?"
    return f"{authorization_endpoint}{separator}{to_query(params)}"


def parse_auth_url(url: str) -> AuthRequestParameters:
    """
    Reads the authorization request parameters back from a URL.

    Raises:
        ValueError: If a mandatory parameter is missing or `claims` is not JSON.
    """
    query = parse_qs(urlsplit(url).query, keep_blank_values=True)

    def single(name: str) -> str:
        values = query.get(name)
        if not values:
            raise ValueError(f"Authorization URL has no '{name}' parameter")
        return values[0]

    raw_claims = query.get("claims")
    return AuthRequestParameters(
        client_id=single("client_id"),
        redirect_uri=single("redirect_uri"),
        response_type=single("response_type"),
        scope=single("scope").split(),
        state=single("state"),
        nonce=single("nonce"),
        claims=json.loads(raw_claims[0]) if raw_claims else None,
    )
