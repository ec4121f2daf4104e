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
Presets for well-known providers.
"""

import httpx
from pydantic import BaseModel, ConfigDict, SecretStr

from coreason_oidc.cache import KeyValueCache
from coreason_oidc.client import OIDCClient, make_client
from coreason_oidc.config import CoreasonOIDCConfig
from coreason_oidc.models import ClientConfig, StaticClient

MICROSOFT_AUTHORITY = "https://login.microsoftonline.com"


class ProviderPreset(BaseModel):
    """A provider URI together with a statically registered client."""

    model_config = ConfigDict(frozen=True)

    provider_uri: str
    client_source: StaticClient


def microsoft(
    app_id: str, secret: str | None, redirect_uri: str, tenant_id: str = "common"
) -> ProviderPreset:
    """
    Preset for the Microsoft identity platform v2.0 endpoint.

    Args:
        app_id: The application (client) ID from the app registration.
        secret: The client secret, if the app has one.
        redirect_uri: The redirect URI registered for the app.
        tenant_id: Tenant ID or one of `common`, `organizations`, `consumers`.
    """
    return ProviderPreset(
        provider_uri=f"{MICROSOFT_AUTHORITY}/{tenant_id}/v2.0",
        client_source=StaticClient(
            config=ClientConfig(
                id=app_id,
                secret=SecretStr(secret) if secret else None,
                response_types=["code"],
                grant_types=["authorization_code"],
                redirect_uris=[redirect_uri],
                token_endpoint_auth_method="client_secret_post",
            )
        ),
    )


async def make_microsoft_client(
    app_id: str,
    secret: str | None,
    redirect_uri: str,
    tenant_id: str = "common",
    *,
    cache: KeyValueCache | None = None,
    http_client: httpx.AsyncClient | None = None,
    config: CoreasonOIDCConfig | None = None,
    timeout: float | None = None,
) -> OIDCClient:
    preset = microsoft(app_id, secret, redirect_uri, tenant_id=tenant_id)
    return await make_client(
        preset.provider_uri,
        redirect_uri,
        preset.client_source,
        cache=cache,
        http_client=http_client,
        config=config,
        timeout=timeout,
    )
