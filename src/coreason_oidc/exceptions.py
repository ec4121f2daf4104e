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
Custom exceptions for the coreason-oidc package.

Every failure of the relying-party flow surfaces as a distinct subclass of
`CoreasonOIDCError` so callers can tell transient network trouble apart from
provider rejections and from security-relevant validation failures.
"""

from typing import Any


class CoreasonOIDCError(Exception):
    """Base exception for all coreason-oidc errors."""

    retryable: bool = False


class NetworkError(CoreasonOIDCError):
    """Raised on transport-level failures (connection errors, timeouts)."""

    retryable = True


class OversizedResponseError(NetworkError):
    """Raised when an HTTP response is too large."""

    retryable = False


class MalformedError(CoreasonOIDCError):
    """Base class for schema violations in data received from the provider."""


class MalformedDocumentError(MalformedError):
    """Raised when a discovery document or JWKS is missing required fields or is not JSON."""


class MalformedResponseError(MalformedError):
    """Raised when a token, registration or userinfo response cannot be understood."""


class MalformedTokenError(MalformedError):
    """Raised when an ID token cannot be parsed or lacks mandatory claims."""


class ProviderError(CoreasonOIDCError):
    """
    Raised when the provider rejects a request.

    Attributes:
        status_code (int | None): The HTTP status returned by the provider.
        payload (Any): The decoded error body (or raw text if it was not JSON).
    """

    def __init__(self, message: str, *, status_code: int | None = None, payload: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class RegistrationError(ProviderError):
    """Raised when dynamic client registration is rejected."""


class TokenEndpointError(ProviderError):
    """Raised when the token endpoint rejects the authorization code exchange."""


class UserInfoEndpointError(ProviderError):
    """Raised when the userinfo endpoint rejects the request."""


class ValidationFailure(CoreasonOIDCError):
    """Base class for security-relevant validation failures. Always fatal to the attempt."""


class KeyNotFoundError(ValidationFailure):
    """Raised when no JWK can be resolved for the ID token."""


class InvalidSignatureError(ValidationFailure):
    """Raised when the ID token signature cannot be verified."""


class IssuerMismatchError(ValidationFailure):
    """Raised when the ID token issuer differs from the discovery issuer."""


class AudienceMismatchError(ValidationFailure):
    """Raised when the ID token is not addressed to this client."""


class TokenExpiredError(ValidationFailure):
    """Raised when the ID token has expired."""


class NonceMismatchError(ValidationFailure):
    """Raised when the ID token nonce differs from the one sent in the auth request."""


class StateMismatchError(ValidationFailure):
    """Raised when the callback state differs from the state that was issued."""


class SubjectMismatchError(ValidationFailure):
    """Raised when the userinfo subject differs from the ID token subject."""


class MissingCodeError(ValidationFailure):
    """Raised when the callback carries no authorization code."""


class MissingStateError(ValidationFailure):
    """Raised when the callback carries no state."""
