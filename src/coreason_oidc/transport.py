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
HTTP plumbing shared by every component talking to the provider.

`send` is the single entry point for network I/O: it enforces the response
size limit and the per-call deadline, and translates httpx failures into
`NetworkError`. `SafeHTTPTransport` pins DNS resolution to public addresses to
mitigate SSRF through provider-controlled URLs (jwks_uri, userinfo_endpoint).
"""

import ipaddress
import json
import socket
from typing import Any, NamedTuple

import anyio
import httpx

from coreason_oidc.exceptions import CoreasonOIDCError, NetworkError, OversizedResponseError
from coreason_oidc.utils.logger import logger

MAX_RESPONSE_BYTES = 1_000_000


class SecurityError(CoreasonOIDCError):
    """Raised when a request targets a prohibited address."""


class RawResponse(NamedTuple):
    status_code: int
    headers: httpx.Headers
    content: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class SafeHTTPTransport(httpx.AsyncHTTPTransport):
    """
    An HTTP transport that resolves the hostname itself, rejects private,
    loopback, link-local, reserved and multicast addresses, and connects to the
    first public address while keeping the original Host header and SNI.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        hostname = request.url.host

        try:
            literal = ipaddress.ip_address(hostname)
        except ValueError:
            literal = None
        if literal is not None:
            self._validate_ip(literal, hostname)
            return await super().handle_async_request(request)

        try:
            addr_infos = await anyio.to_thread.run_sync(socket.getaddrinfo, hostname, None, 0, socket.SOCK_STREAM)
        except socket.gaierror as e:
            logger.warning(f"DNS resolution failed for {hostname}: {e}")
            raise NetworkError(f"DNS resolution failed for {hostname}: {e}") from e

        target_ip: str | None = None
        for _, _, _, _, sockaddr in addr_infos:
            try:
                self._validate_ip(ipaddress.ip_address(sockaddr[0]), hostname)
            except (SecurityError, ValueError):
                continue
            target_ip = str(sockaddr[0])
            break

        if target_ip is None:
            logger.error(f"Security violation: No valid public IP found for {hostname}")
            raise SecurityError(f"Security violation: No valid public IP found for {hostname}")

        request.extensions["sni_hostname"] = hostname
        if "Host" not in request.headers:
            request.headers["Host"] = request.url.netloc.decode("ascii")
        request.url = request.url.copy_with(host=target_ip)

        logger.debug(f"DNS Pinned: {hostname} -> {target_ip}")
        return await super().handle_async_request(request)

    def _validate_ip(self, ip_obj: Any, hostname: str) -> None:
        if (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        ):
            logger.warning(f"Security violation: Blocked access to {hostname} ({ip_obj})")
            raise SecurityError(f"Access to {hostname} ({ip_obj}) is blocked")


async def send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: dict[str, str] | None = None,
    data: dict[str, str] | None = None,
    json_body: Any = None,
    timeout: float | None = None,
) -> RawResponse:
    """
    Sends a request and reads the whole body, bounded by MAX_RESPONSE_BYTES.

    The status code is not interpreted here; callers decide what a non-2xx
    response means for them.

    Args:
        client: The async HTTP client to use.
        method: The HTTP method.
        url: The absolute URL.
        headers: Extra request headers.
        data: Form fields, sent as application/x-www-form-urlencoded.
        json_body: A JSON-serializable body.
        timeout: Deadline in seconds for this call. Defaults to the client's timeout.

    Returns:
        RawResponse: status, headers and raw body.

    Raises:
        NetworkError: On connection failures and timeouts (retryable).
        OversizedResponseError: If the body exceeds MAX_RESPONSE_BYTES.
    """
    kwargs: dict[str, Any] = {"headers": headers, "follow_redirects": True}
    if data is not None:
        kwargs["data"] = data
    if json_body is not None:
        kwargs["json"] = json_body
    if timeout is not None:
        kwargs["timeout"] = timeout

    try:
        async with client.stream(method, url, **kwargs) as response:
            content_length = response.headers.get("Content-Length")
            if content_length and content_length.isdigit() and int(content_length) > MAX_RESPONSE_BYTES:
                raise OversizedResponseError(f"Response from {url} too large")

            content = bytearray()
            async for chunk in response.aiter_bytes():
                content.extend(chunk)
                if len(content) > MAX_RESPONSE_BYTES:
                    raise OversizedResponseError(f"Response from {url} too large")

            return RawResponse(response.status_code, response.headers, bytes(content))
    except httpx.TimeoutException as e:
        logger.warning(f"{method} {url} timed out")
        raise NetworkError(f"Request to {url} timed out: {e}") from e
    except httpx.HTTPError as e:
        logger.warning(f"{method} {url} failed: {e}")
        raise NetworkError(f"Request to {url} failed: {e}") from e


def decode_json(content: bytes, error_cls: type[CoreasonOIDCError], what: str) -> Any:
    """
    Decodes a JSON body.

    Raises:
        error_cls: If the body is not valid UTF-8 JSON.
    """
    try:
        return json.loads(content)
    except (ValueError, UnicodeDecodeError) as e:
        raise error_cls(f"Invalid JSON in {what}: {e}") from e


def error_payload(content: bytes) -> Any:
    """Best-effort decoding of a provider error body: JSON if possible, else text."""
    try:
        return json.loads(content)
    except (ValueError, UnicodeDecodeError):
        return content.decode("utf-8", errors="replace")
