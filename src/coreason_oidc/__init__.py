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
Asynchronous OpenID Connect relying-party client: discovery, registration,
authorization code flow, ID token validation and userinfo.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .cache import KeyValueCache, MemoryCache
from .client import OIDCClient, get_auth_url, get_userinfo, handle_callback, make_client, register_client
from .config import CoreasonOIDCConfig
from .exceptions import CoreasonOIDCError
from .models import (
    ClaimsRequest,
    ClientConfig,
    ClientMeta,
    PendingRegistration,
    StaticClient,
    TokenResponse,
    ValidatedIdentity,
)
from .providers import make_microsoft_client, microsoft

__all__ = [
    "ClaimsRequest",
    "ClientConfig",
    "ClientMeta",
    "CoreasonOIDCConfig",
    "CoreasonOIDCError",
    "KeyValueCache",
    "MemoryCache",
    "OIDCClient",
    "PendingRegistration",
    "StaticClient",
    "TokenResponse",
    "ValidatedIdentity",
    "get_auth_url",
    "get_userinfo",
    "handle_callback",
    "make_client",
    "make_microsoft_client",
    "microsoft",
    "register_client",
]
