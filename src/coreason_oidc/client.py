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
OIDCClient facade orchestrating the relying-party flow.
"""

import hmac
from typing import Any
from urllib.parse import parse_qs, urlsplit

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_oidc.auth_request import build_auth_url, make_auth_parameters
from coreason_oidc.cache import KeyValueCache, MemoryCache
from coreason_oidc.config import CoreasonOIDCConfig
from coreason_oidc.discovery import DiscoveryResolver
from coreason_oidc.exceptions import MissingCodeError, MissingStateError, StateMismatchError
from coreason_oidc.id_token import IDTokenValidator
from coreason_oidc.models import (
    AuthRequestParameters,
    ClientConfig,
    ClientMeta,
    ClientSource,
    DiscoveryDocument,
    JWKSet,
    PendingRegistration,
    TokenResponse,
    ValidatedIdentity,
)
from coreason_oidc.registration import ClientRegistrar
from coreason_oidc.token_exchange import TokenExchanger
from coreason_oidc.transport import SafeHTTPTransport
from coreason_oidc.userinfo import UserInfoFetcher
from coreason_oidc.utils.logger import logger


def _build_http_client(config: CoreasonOIDCConfig) -> httpx.AsyncClient:
    # SafeHTTPTransport prevents SSRF through provider-supplied URLs
    transport = None if config.unsafe_local_dev else SafeHTTPTransport()
    client = httpx.AsyncClient(transport=transport, timeout=config.http_timeout)
    HTTPXClientInstrumentor().instrument_client(client)
    return client


class OIDCClient:
    """
    Relying-party client for one provider and one registered client.

    Holds the immutable ClientConfig, the HTTP client and the cache handle for
    its whole lifetime. A failed operation only fails that call. Use it as an
    async context manager so an internally created HTTP client gets closed.

    Attributes:
        provider_uri (str): The provider base URI used for discovery.
        redirect_uri (str): The redirect URI sent in authorization and token requests.
        client_config (ClientConfig): The effective client.
    """

    def __init__(
        self,
        provider_uri: str,
        redirect_uri: str,
        client_config: ClientConfig,
        *,
        cache: KeyValueCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        config: CoreasonOIDCConfig | None = None,
        owns_http_client: bool | None = None,
    ) -> None:
        """
        Initialize the OIDCClient.

        Args:
            provider_uri: The provider base URI (discovery lives below it).
            redirect_uri: The redirect URI registered for this client.
            client_config: The resolved client configuration.
            cache: Store for discovery documents and JWKS. Defaults to a MemoryCache.
            http_client: External async client (optional). If not provided, a `SafeHTTPTransport` client is created.
            config: Runtime settings. Defaults to `CoreasonOIDCConfig()` read from the environment.
            owns_http_client: Close `http_client` on exit. Defaults to True only for an internal client.
        """
        self.config = config or CoreasonOIDCConfig()
        self.provider_uri = self.config.require_secure_uri("provider_uri", provider_uri)
        self.redirect_uri = self.config.require_secure_uri("redirect_uri", redirect_uri)
        self.client_config = client_config

        self._client = http_client or _build_http_client(self.config)
        self._internal_client = http_client is None if owns_http_client is None else owns_http_client
        self.cache = cache if cache is not None else MemoryCache()

        self.resolver = DiscoveryResolver(self.provider_uri, self._client, self.cache)
        self.registrar = ClientRegistrar(self._client)
        self.exchanger = TokenExchanger(self._client, placeholder_secret=self.config.legacy_secret_placeholder)
        self.validator = IDTokenValidator(
            allowed_algorithms=self.config.allowed_algorithms,
            pii_salt=self.config.pii_salt,
            leeway=self.config.clock_skew_leeway,
            allow_unsigned=self.config.allow_unsigned_tokens,
        )
        self.userinfo = UserInfoFetcher(self._client)

    async def __aenter__(self) -> "OIDCClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def discover(self, force_refresh: bool = False, timeout: float | None = None) -> DiscoveryDocument:
        return await self.resolver.discover(force_refresh=force_refresh, timeout=timeout)

    async def get_jwks(self, force_refresh: bool = False, timeout: float | None = None) -> JWKSet:
        return await self.resolver.jwks(force_refresh=force_refresh, timeout=timeout)

    def get_auth_parameters(
        self,
        nonce: str,
        state: str,
        scope: str | list[str] | None = None,
        claims: dict[str, Any] | None = None,
    ) -> AuthRequestParameters:
        return make_auth_parameters(self.client_config, self.redirect_uri, nonce, state, scope, claims)

    async def get_auth_url(
        self,
        nonce: str,
        state: str,
        scope: str | list[str] | None = None,
        claims: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> str:
        """
        Builds the authorization URL for a new login attempt.

        Args:
            nonce: Per-request value the ID token must echo back.
            state: Per-request value the callback must echo back.
            scope: Requested scopes; `openid` is always included.
            claims: Optional `claims` request parameter.
            timeout: Deadline in seconds for the discovery call.

        Returns:
            str: The URL to redirect the user agent to.

        Raises:
            NetworkError: If discovery fails.
            MalformedDocumentError: If the discovery document is invalid.
        """
        discovery = await self.discover(timeout=timeout)
        return build_auth_url(
            discovery.authorization_endpoint, self.client_config, self.redirect_uri, nonce, state, scope, claims
        )

    async def get_token(self, code: str, timeout: float | None = None) -> TokenResponse:
        discovery = await self.discover(timeout=timeout)
        return await self.exchanger.exchange_code(
            code, self.client_config, self.redirect_uri, discovery, timeout=timeout
        )

    async def get_and_validate_id_token(
        self, code: str, nonce: str | None = None, timeout: float | None = None
    ) -> ValidatedIdentity:
        """
        Redeems the code and validates the ID token it yields.

        The JWKS is resolved before the exchange so a key outage does not
        consume the single-use authorization code.

        Args:
            code: The authorization code from the callback.
            nonce: The nonce issued with the authorization request, if any.
            timeout: Deadline in seconds for each network call.

        Raises:
            CoreasonOIDCError: Any failure of discovery, exchange or validation, unchanged.
        """
        discovery = await self.discover(timeout=timeout)
        jwks = await self.get_jwks(timeout=timeout)
        token_response = await self.exchanger.exchange_code(
            code, self.client_config, self.redirect_uri, discovery, timeout=timeout
        )
        return self.validator.validate(token_response, self.client_config, discovery, jwks, expected_nonce=nonce)

    async def handle_callback(
        self,
        uri: str,
        expected_state: str,
        expected_nonce: str | None = None,
        timeout: float | None = None,
    ) -> ValidatedIdentity:
        """
        Completes a login from the redirect the provider sent the user back with.

        Only the `state` and `code` query parameters are read. They are checked
        before any network call is made.

        Args:
            uri: The full callback URI.
            expected_state: The state issued with the authorization request.
            expected_nonce: The nonce issued with the authorization request, if any.
            timeout: Deadline in seconds for each network call.

        Returns:
            ValidatedIdentity: The validated ID token and the token response.

        Raises:
            MissingStateError: If the callback carries no state.
            MissingCodeError: If the callback carries no code.
            StateMismatchError: If the state is not the one that was issued.
            CoreasonOIDCError: Any failure of the exchange or validation, unchanged.
        """
        query = parse_qs(urlsplit(uri).query, keep_blank_values=True)
        state = query.get("state", [None])[0]
        code = query.get("code", [None])[0]

        if state is None:
            raise MissingStateError("No state returned")
        if code is None:
            error = query.get("error", [None])[0]
            raise MissingCodeError(f"No code returned: {error}" if error else "No code returned")
        if not hmac.compare_digest(state.encode("utf-8"), expected_state.encode("utf-8")):
            logger.warning("Callback state does not match the issued state")
            raise StateMismatchError("State doesn't match")

        return await self.get_and_validate_id_token(code, nonce=expected_nonce, timeout=timeout)

    async def get_userinfo(
        self, identity: ValidatedIdentity, access_token: str | None = None, timeout: float | None = None
    ) -> dict[str, Any]:
        """
        Fetches userinfo claims for a validated login.

        Args:
            identity: The result of `handle_callback`.
            access_token: Bearer token to use. Defaults to the identity's own access token.
            timeout: Deadline in seconds for each network call.

        Returns:
            dict[str, Any]: The userinfo claims, whose `sub` matches the ID token.
        """
        discovery = await self.discover(timeout=timeout)
        token = access_token or identity.token_response.access_token
        return await self.userinfo.get_userinfo(token, identity, discovery, timeout=timeout)

    async def register_client(self, meta: ClientMeta, timeout: float | None = None) -> ClientConfig:
        """
        Registers an additional client with the provider.

        The returned ClientConfig is not adopted by this instance.
        """
        discovery = await self.discover(timeout=timeout)
        return await self.registrar.register(meta, discovery, timeout=timeout)


async def make_client(
    provider_uri: str,
    redirect_uri: str,
    client_source: ClientSource,
    *,
    cache: KeyValueCache | None = None,
    http_client: httpx.AsyncClient | None = None,
    config: CoreasonOIDCConfig | None = None,
    timeout: float | None = None,
) -> OIDCClient:
    """
    Creates an OIDCClient, registering the client first if required.

    Both URIs are checked before any request is sent, so a rejected
    configuration never leaves a registered client behind.

    Args:
        provider_uri: The provider base URI.
        redirect_uri: The redirect URI of this application.
        client_source: `StaticClient(config)` or `PendingRegistration(meta)`.
        cache: Store for discovery documents and JWKS. Defaults to a MemoryCache.
        http_client: External async client (optional).
        config: Runtime settings.
        timeout: Deadline in seconds for each discovery and registration call.

    Returns:
        OIDCClient: A client bound to one immutable ClientConfig.

    Raises:
        ValueError: If a URI is not https outside local development.
        CoreasonOIDCError: If discovery or registration fails.
    """
    settings = config or CoreasonOIDCConfig()
    cache = cache if cache is not None else MemoryCache()

    if not isinstance(client_source, PendingRegistration):
        return OIDCClient(
            provider_uri, redirect_uri, client_source.config, cache=cache, http_client=http_client, config=settings
        )

    settings.require_secure_uri("provider_uri", provider_uri)
    settings.require_secure_uri("redirect_uri", redirect_uri)
    internal = http_client is None
    client = http_client or _build_http_client(settings)
    try:
        discovery = await DiscoveryResolver(provider_uri, client, cache).discover(timeout=timeout)
        client_config = await ClientRegistrar(client).register(client_source.meta, discovery, timeout=timeout)
        return OIDCClient(
            provider_uri,
            redirect_uri,
            client_config,
            cache=cache,
            http_client=client,
            config=settings,
            owns_http_client=internal,
        )
    except BaseException:
        if internal:
            await client.aclose()
        raise


async def get_auth_url(
    client: OIDCClient,
    nonce: str,
    state: str,
    scope: str | list[str] | None = None,
    claims: dict[str, Any] | None = None,
    timeout: float | None = None,
) -> str:
    return await client.get_auth_url(nonce, state, scope=scope, claims=claims, timeout=timeout)


async def handle_callback(
    client: OIDCClient,
    uri: str,
    expected_state: str,
    expected_nonce: str | None = None,
    timeout: float | None = None,
) -> ValidatedIdentity:
    return await client.handle_callback(uri, expected_state, expected_nonce, timeout=timeout)


async def get_userinfo(
    client: OIDCClient, identity: ValidatedIdentity, access_token: str | None = None, timeout: float | None = None
) -> dict[str, Any]:
    return await client.get_userinfo(identity, access_token, timeout=timeout)


async def register_client(client: OIDCClient, meta: ClientMeta, timeout: float | None = None) -> ClientConfig:
    return await client.register_client(meta, timeout=timeout)
