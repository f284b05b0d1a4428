"""
Token acquisition for Graph, Storage and Log Analytics.

Tokens come from azure-identity. Runbooks are short-lived, so each audience
is acquired once per provider and reused for the whole run; there is no
refresh.
"""
import logging
from typing import Any, Dict, Optional

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import DefaultAzureCredential, ManagedIdentityCredential

from .constants import (
    AUDIENCE_ALIASES,
    CREDENTIAL_DEFAULT,
    CREDENTIAL_MANAGED_IDENTITY,
    DEFAULT_SCOPE_SUFFIX,
)
from .errors import AuthenticationError

logger = logging.getLogger(__name__)


def resolve_audience(audience: str) -> str:
    """Map a short alias (graph, storage, loganalytics) to its resource URI."""
    if not audience:
        raise ValueError("audience is required")
    return AUDIENCE_ALIASES.get(audience.lower(), audience).rstrip('/')


def audience_to_scope(audience: str) -> str:
    """Build the client-credentials scope for a resource audience."""
    resource = resolve_audience(audience)
    if resource.endswith(DEFAULT_SCOPE_SUFFIX):
        return resource
    return f"{resource}{DEFAULT_SCOPE_SUFFIX}"


def normalize_token(raw: Any) -> str:
    """
    Reduce whatever the identity layer returned to a plain bearer string.

    Accepts an AccessToken (or anything with a ``token`` attribute), bytes,
    secret wrappers exposing ``get_secret_value()``, or a plain string.
    Returns an empty string when nothing usable is present.
    """
    if raw is None:
        return ""
    if hasattr(raw, 'token'):
        raw = raw.token
    if hasattr(raw, 'get_secret_value'):
        raw = raw.get_secret_value()
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode('utf-8')
    return str(raw).strip()


def get_credential(credential_type: str = CREDENTIAL_MANAGED_IDENTITY,
                   client_id: Optional[str] = None):
    """Create an azure-identity credential for the configured identity."""
    if credential_type == CREDENTIAL_MANAGED_IDENTITY:
        if client_id:
            return ManagedIdentityCredential(client_id=client_id)
        return ManagedIdentityCredential()
    if credential_type == CREDENTIAL_DEFAULT:
        if client_id:
            return DefaultAzureCredential(managed_identity_client_id=client_id)
        return DefaultAzureCredential()
    raise ValueError(f"Unknown credential type: {credential_type}")


class TokenProvider:
    """
    Acquires bearer tokens for resource audiences.

    Usage:
        provider = TokenProvider()
        graph_token = provider.acquire_token("graph")
    """

    def __init__(self, credential=None,
                 credential_type: str = CREDENTIAL_MANAGED_IDENTITY,
                 client_id: Optional[str] = None):
        self._credential = credential
        self._credential_type = credential_type
        self._client_id = client_id
        self._tokens: Dict[str, str] = {}

    @property
    def credential(self):
        if self._credential is None:
            self._credential = get_credential(self._credential_type, self._client_id)
        return self._credential

    def acquire_token(self, audience: str) -> str:
        """
        Return a bearer token for ``audience``.

        Raises:
            AuthenticationError: If the identity could not be established or
                the token came back empty.
        """
        resource = resolve_audience(audience)
        if resource in self._tokens:
            return self._tokens[resource]

        scope = audience_to_scope(resource)
        logger.info(f"Acquiring token for {resource}")
        try:
            raw = self.credential.get_token(scope)
        except ClientAuthenticationError as e:
            logger.error(f"Failed to acquire token for {resource}: {e}")
            raise AuthenticationError(
                f"Could not acquire token for {resource}: {e}",
                audience=resource,
                original_error=e,
            ) from e

        token = normalize_token(raw)
        if not token:
            logger.error(f"Identity returned an empty token for {resource}")
            raise AuthenticationError(f"Empty token returned for {resource}", audience=resource)

        self._tokens[resource] = token
        return token

    def __repr__(self) -> str:
        return f"TokenProvider(credential_type={self._credential_type!r}, audiences={sorted(self._tokens)})"
