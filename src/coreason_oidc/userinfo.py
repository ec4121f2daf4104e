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
UserInfoFetcher component for retrieving and cross-checking userinfo claims.
"""

import hmac
from typing import Any

import httpx
from opentelemetry import trace

from coreason_oidc.exceptions import (
    MalformedDocumentError,
    MalformedResponseError,
    SubjectMismatchError,
    UserInfoEndpointError,
)
from coreason_oidc.models import DiscoveryDocument, ValidatedIdentity
from coreason_oidc.transport import decode_json, error_payload, send
from coreason_oidc.utils.logger import logger

tracer = trace.get_tracer(__name__)


class UserInfoFetcher:
    """
    Fetches the userinfo endpoint and checks it describes the ID token's subject.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def get_userinfo(
        self,
        access_token: str,
        identity: ValidatedIdentity,
        discovery: DiscoveryDocument,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Retrieves the userinfo claims.

        The `sub` of the response must equal the `sub` of the validated ID
        token (OpenID Connect Core 1.0, section 5.3.2), otherwise the response
        may belong to another user and is rejected.

        Args:
            access_token: The bearer token authorizing the request.
            identity: The validated ID token of the same login.
            discovery: The provider metadata holding `userinfo_endpoint`.
            timeout: Deadline in seconds for the network call.

        Returns:
            dict[str, Any]: The userinfo claims.

        Raises:
            MalformedDocumentError: If the provider advertises no userinfo endpoint.
            NetworkError: If the request cannot be sent.
            UserInfoEndpointError: If the provider rejects the request.
            MalformedResponseError: If the response is not a JSON object.
            SubjectMismatchError: If the subjects differ.
        """
        endpoint = discovery.userinfo_endpoint
        if not endpoint:
            raise MalformedDocumentError(f"Provider {discovery.issuer} does not advertise a userinfo_endpoint")

        with tracer.start_as_current_span("oidc.userinfo") as span:
            span.set_attribute("url.full", endpoint)
            response = await send(
                self.client,
                "GET",
                endpoint,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=timeout,
            )

        if not response.ok:
            raise UserInfoEndpointError(
                f"Userinfo endpoint answered with status {response.status_code}",
                status_code=response.status_code,
                payload=error_payload(response.content),
            )

        claims = decode_json(response.content, MalformedResponseError, "userinfo response")
        if not isinstance(claims, dict):
            raise MalformedResponseError("Userinfo response is not a JSON object")

        sub = claims.get("sub")
        if not isinstance(sub, str) or not hmac.compare_digest(
            sub.encode("utf-8"), identity.subject.encode("utf-8")
        ):
            logger.warning("Userinfo subject does not match the ID token subject")
            raise SubjectMismatchError("Userinfo 'sub' does not match the ID token 'sub'")

        return claims
