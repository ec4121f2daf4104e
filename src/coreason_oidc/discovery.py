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
Discovery component for fetching and caching the provider metadata and JWKS.
"""

import httpx
from opentelemetry import trace
from pydantic import ValidationError

from coreason_oidc.cache import KeyValueCache, discovery_cache_key, jwks_cache_key
from coreason_oidc.exceptions import MalformedDocumentError, NetworkError
from coreason_oidc.models import DiscoveryDocument, JWKSet
from coreason_oidc.transport import RawResponse, decode_json, send
from coreason_oidc.utils.logger import logger

tracer = trace.get_tracer(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"


def well_known_url(provider_uri: str) -> str:
    """Builds the discovery URL (OpenID Connect Discovery 1.0, section 4)."""
    return provider_uri.rstrip("/") + WELL_KNOWN_PATH


def _check_status(response: RawResponse, url: str) -> None:
    # 5xx is the provider being unavailable, anything else non-2xx means there is no document
    if response.status_code >= 500:
        raise NetworkError(f"{url} answered with status {response.status_code}")
    if not response.ok:
        raise MalformedDocumentError(f"{url} answered with status {response.status_code}")


class DiscoveryResolver:
    """
    Fetches the provider's metadata document and JWKS, caching both.

    A cached document is reused until a caller forces a refresh; expiry is left
    to the cache implementation.

    Attributes:
        provider_uri (str): The issuer-like base URI of the provider.
        client (httpx.AsyncClient): The HTTP client used for fetching.
        cache (KeyValueCache): Store for the serialized documents.
    """

    def __init__(self, provider_uri: str, client: httpx.AsyncClient, cache: KeyValueCache) -> None:
        self.provider_uri = provider_uri
        self.client = client
        self.cache = cache

    async def discover(self, force_refresh: bool = False, timeout: float | None = None) -> DiscoveryDocument:
        """
        Returns the discovery document, using the cache unless `force_refresh` is set.

        Args:
            force_refresh: If True, bypasses the cache and fetches a fresh document.
            timeout: Deadline in seconds for the network call.

        Returns:
            DiscoveryDocument: The provider metadata.

        Raises:
            NetworkError: If the document cannot be fetched.
            MalformedDocumentError: If the document is not JSON or lacks required fields.
        """
        key = discovery_cache_key(self.provider_uri)
        if not force_refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    return DiscoveryDocument.model_validate_json(cached)
                except ValidationError:
                    logger.warning(f"Discarding unreadable cached discovery document for {self.provider_uri}")

        url = well_known_url(self.provider_uri)
        with tracer.start_as_current_span("oidc.discover") as span:
            span.set_attribute("url.full", url)
            response = await send(self.client, "GET", url, headers={"Accept": "application/json"}, timeout=timeout)
            _check_status(response, url)
            data = decode_json(response.content, MalformedDocumentError, "discovery document")
            try:
                document = DiscoveryDocument.model_validate(data)
            except ValidationError as e:
                raise MalformedDocumentError(f"Invalid OIDC configuration from {url}: {e}") from e

        await self.cache.put(key, document.model_dump_json())
        logger.info(f"Discovered OIDC configuration for issuer {document.issuer}")
        return document

    async def jwks(self, force_refresh: bool = False, timeout: float | None = None) -> JWKSet:
        """
        Returns the provider's JWKS, using the cache unless `force_refresh` is set.

        The discovery document is resolved first (from cache when possible) to
        find the `jwks_uri`.

        Args:
            force_refresh: If True, bypasses the cache and fetches fresh keys.
            timeout: Deadline in seconds for each network call.

        Returns:
            JWKSet: The key set.

        Raises:
            NetworkError: If the keys cannot be fetched.
            MalformedDocumentError: If the response is not a key set.
        """
        key = jwks_cache_key(self.provider_uri)
        if not force_refresh:
            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    return JWKSet.model_validate_json(cached)
                except ValidationError:
                    logger.warning(f"Discarding unreadable cached JWKS for {self.provider_uri}")

        discovery = await self.discover(timeout=timeout)
        with tracer.start_as_current_span("oidc.jwks") as span:
            span.set_attribute("url.full", discovery.jwks_uri)
            response = await send(
                self.client, "GET", discovery.jwks_uri, headers={"Accept": "application/json"}, timeout=timeout
            )
            _check_status(response, discovery.jwks_uri)
            data = decode_json(response.content, MalformedDocumentError, "JWKS")
            try:
                jwks = JWKSet.model_validate(data)
            except ValidationError as e:
                raise MalformedDocumentError(f"Invalid JWKS from {discovery.jwks_uri}: {e}") from e

        await self.cache.put(key, jwks.model_dump_json())
        logger.debug(f"Fetched {len(jwks)} signing keys from {discovery.jwks_uri}")
        return jwks
