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
ClientRegistrar component for OpenID Connect Dynamic Client Registration.
"""

import httpx
from pydantic import ValidationError

from coreason_oidc.exceptions import MalformedResponseError, RegistrationError
from coreason_oidc.models import ClientConfig, ClientMeta, DiscoveryDocument
from coreason_oidc.transport import decode_json, error_payload, send
from coreason_oidc.utils.logger import logger


class ClientRegistrar:
    """
    Registers a client with the provider's registration endpoint.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def register(
        self, meta: ClientMeta, discovery: DiscoveryDocument, timeout: float | None = None
    ) -> ClientConfig:
        """
        Posts the client metadata and merges the provider's answer into a ClientConfig.

        Args:
            meta: The metadata to register.
            discovery: The provider metadata holding `registration_endpoint`.
            timeout: Deadline in seconds for the network call.

        Returns:
            ClientConfig: The effective client, with the server-assigned id and secret.

        Raises:
            RegistrationError: If the provider has no registration endpoint or rejects the request.
            NetworkError: If the request cannot be sent.
            MalformedResponseError: If a successful response carries no client_id.
        """
        endpoint = discovery.registration_endpoint
        if not endpoint:
            raise RegistrationError(f"Provider {discovery.issuer} does not advertise a registration_endpoint")

        response = await send(
            self.client,
            "POST",
            endpoint,
            headers={"Accept": "application/json"},
            json_body=meta.to_registration_request(),
            timeout=timeout,
        )

        if not response.ok:
            payload = error_payload(response.content)
            logger.error(f"Client registration rejected with status {response.status_code}")
            raise RegistrationError(
                f"Registration rejected by {endpoint} (status {response.status_code})",
                status_code=response.status_code,
                payload=payload,
            )

        data = decode_json(response.content, MalformedResponseError, "registration response")
        if not isinstance(data, dict) or not isinstance(data.get("client_id"), str):
            raise MalformedResponseError("Registration response does not contain a client_id")

        try:
            config = ClientConfig.from_registration(data, meta)
        except ValidationError as e:
            raise MalformedResponseError(f"Invalid registration response: {e}") from e

        logger.info(f"Registered client {config.id} with {discovery.issuer}")
        return config
