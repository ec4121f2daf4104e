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
TokenExchanger component for the OAuth 2.0 authorization code grant.
"""

import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_oidc.exceptions import MalformedResponseError, TokenEndpointError
from coreason_oidc.models import ClientConfig, DiscoveryDocument, TokenResponse
from coreason_oidc.transport import decode_json, error_payload, send
from coreason_oidc.utils.logger import logger

tracer = trace.get_tracer(__name__)


class TokenExchanger:
    """
    Exchanges an authorization code for tokens at the provider's token endpoint.

    Attributes:
        client (httpx.AsyncClient): The HTTP client used for the exchange.
        placeholder_secret (str | None): Secret sent for clients without one.
            Only some providers tolerate this, so it is opt-in.
    """

    def __init__(self, client: httpx.AsyncClient, placeholder_secret: str | None = None) -> None:
        self.client = client
        self.placeholder_secret = placeholder_secret

    def _build_form(self, code: str, client_config: ClientConfig, redirect_uri: str) -> dict[str, str]:
        form = {
            "grant_type": "authorization_code",
            "scope": "openid",
            "code": code,
            "client_id": client_config.id,
        }
        if client_config.secret is not None:
            form["client_secret"] = client_config.secret.get_secret_value()
        elif self.placeholder_secret is not None:
            logger.warning(f"Client {client_config.id} has no secret; sending the configured placeholder secret")
            form["client_secret"] = self.placeholder_secret
        form["redirect_uri"] = redirect_uri
        return form

    async def exchange_code(
        self,
        code: str,
        client_config: ClientConfig,
        redirect_uri: str,
        discovery: DiscoveryDocument,
        timeout: float | None = None,
    ) -> TokenResponse:
        """
        Redeems the authorization code.

        Args:
            code: The authorization code from the callback.
            client_config: The client redeeming the code.
            redirect_uri: The redirect URI used in the authorization request.
            discovery: The provider metadata holding `token_endpoint`.
            timeout: Deadline in seconds for the network call.

        Returns:
            TokenResponse: The decoded token endpoint response.

        Raises:
            NetworkError: If the request cannot be sent.
            TokenEndpointError: If the provider rejects the exchange.
            MalformedResponseError: If the response is not JSON or has no id_token.
        """
        with tracer.start_as_current_span("oidc.exchange_code") as span:
            span.set_attribute("url.full", discovery.token_endpoint)
            response = await send(
                self.client,
                "POST",
                discovery.token_endpoint,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
                data=self._build_form(code, client_config, redirect_uri),
                timeout=timeout,
            )

            if not response.ok:
                payload = error_payload(response.content)
                error = payload.get("error") if isinstance(payload, dict) else None
                logger.warning(f"Token endpoint rejected code exchange: status={response.status_code} error={error}")
                span.set_status(Status(StatusCode.ERROR, f"status {response.status_code}"))
                raise TokenEndpointError(
                    f"Token endpoint answered with status {response.status_code}: {error or 'unknown error'}",
                    status_code=response.status_code,
                    payload=payload,
                )

            data = decode_json(response.content, MalformedResponseError, "token response")
            if not isinstance(data, dict):
                raise MalformedResponseError("Token response is not a JSON object")
            if not data.get("id_token"):
                raise MalformedResponseError("Token response does not contain an id_token")
            try:
                return TokenResponse.model_validate(data)
            except ValidationError as e:
                raise MalformedResponseError(f"Invalid token response: {e}") from e
