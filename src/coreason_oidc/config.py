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
Configuration for the coreason-oidc package.
"""

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoreasonOIDCConfig(BaseSettings):
    """
    Runtime settings for the relying-party client.

    Attributes:
        http_timeout (float): Default deadline in seconds for every provider call.
        allowed_algorithms (list[str]): JWS algorithms accepted for ID token signatures.
        clock_skew_leeway (int): Acceptable clock skew in seconds when checking expiry.
        pii_salt (SecretStr): Salt for anonymizing subjects in logs and traces.
        allow_unsigned_tokens (bool): Accept ID tokens using the "none" algorithm.
        legacy_secret_placeholder (str | None): Secret sent for clients that have none configured.
        unsafe_local_dev (bool): Allow plain http URIs and private addresses.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_OIDC_",
        case_sensitive=False,
    )

    http_timeout: float = Field(default=10.0, gt=0, description="Timeout in seconds for all IdP network operations.")
    allowed_algorithms: list[str] = Field(default_factory=lambda: ["RS256"])
    clock_skew_leeway: int = Field(default=0, ge=0)
    pii_salt: SecretStr = SecretStr("coreason-unsafe-default-salt")
    allow_unsigned_tokens: bool = True
    legacy_secret_placeholder: str | None = None
    unsafe_local_dev: bool = False

    @field_validator("allowed_algorithms")
    @classmethod
    def validate_algorithms(cls, v: list[str]) -> list[str]:
        """
        Rejects an empty algorithm list and the "none" pseudo-algorithm.

        Unsigned tokens are governed by `allow_unsigned_tokens` instead.
        """
        if not v:
            raise ValueError("allowed_algorithms must contain at least one algorithm")
        if any(alg.lower() == "none" for alg in v):
            raise ValueError("'none' is not a signing algorithm; use allow_unsigned_tokens")
        return v

    def require_secure_uri(self, name: str, uri: str) -> str:
        """
        Ensures the given URI uses HTTPS, unless strictly opted out for local dev.

        Raises:
            ValueError: If the URI is plain http in production mode.
        """
        if uri.startswith("http://") and not self.unsafe_local_dev:
            raise ValueError(
                f"HTTPS is required for {name}. Set 'unsafe_local_dev=True' only for local testing."
            )
        return uri
