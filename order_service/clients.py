"""
This module provides the communication client for the external identity provider
used by the order service:
- Identity Provider (REST API): verifies bearer tokens and returns the subject
  id (or the full identity, used when registering the local user record).
The class encapsulates its protocol logic, error handling, and connection management.
"""

from typing import Optional

import httpx

from . import config
from .errors import AuthenticationFailed
from .logging_config import get_logger
from .retry import RetryPolicy

log = get_logger(__name__)


# --- Identity Client (REST) ---
class IdentityClient:
    """
    Client for the Identity Provider (REST API).
    Resolves a bearer token to the subject id of the authenticated user.
    """
    def __init__(self, base_url: str = None, api_key: str = None,
                 retry_policy: Optional[RetryPolicy] = None, transport: httpx.BaseTransport = None):
        """
        Initializes the HTTP client with proper timeout configuration.

        Args:
            base_url (str): Provider base URL. Defaults to AUTH_SERVICE_URL.
            api_key (str): Project API key sent as 'apikey' header. Defaults to AUTH_SERVICE_API_KEY.
            retry_policy (RetryPolicy): Retry parameters for the verification call.
            transport (httpx.BaseTransport): Optional transport, e.g. httpx.MockTransport in tests.
        """
        timeout_config = httpx.Timeout(config.AUTH_TIMEOUT_SECONDS)
        headers = {"apikey": api_key if api_key is not None else config.AUTH_SERVICE_API_KEY}
        self.client = httpx.Client(
            base_url=base_url or config.AUTH_SERVICE_URL,
            timeout=timeout_config,
            headers=headers,
            transport=transport,
        )
        self.retry_policy = retry_policy or RetryPolicy()

    def close(self):
        """Closes the HTTP client session."""
        self.client.close()

    def _get_user(self, token: str) -> dict:
        try:
            response = self.client.get("/auth/v1/user", headers={"Authorization": f"Bearer {token}"})
            response.raise_for_status()  # Raises HTTPStatusError on 4xx/5xx
            return response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                log.warning(f"Identity provider rejected token (HTTP {e.response.status_code}).")
                raise AuthenticationFailed("Invalid or expired token") from e
            log.error(f"HTTP error from identity provider: {e}")
            raise  # transient, retried by the executor

    def identify(self, token: str) -> dict:
        """
        Resolves a bearer token to the identity stored by the provider.

        Args:
            token (str): The raw bearer token.

        Returns:
            dict: {'id': subject id, 'email': email or None, 'name': display name or None}.

        Raises:
            AuthenticationFailed: If the token is missing, rejected, or the payload has no id.
            RetryExhausted: If the provider kept failing (timeouts, 5xx).
        """
        if not token:
            raise AuthenticationFailed("Token missing or invalid")

        payload = self.retry_policy.run(
            lambda: self._get_user(token),
            "verify token",
            give_up_on=(AuthenticationFailed,),
        )
        subject_id = payload.get("id") if isinstance(payload, dict) else None
        if not subject_id:
            raise AuthenticationFailed("Invalid token payload")
        metadata = payload.get("user_metadata") or {}
        return {
            "id": str(subject_id),
            "email": payload.get("email"),
            "name": metadata.get("name") if isinstance(metadata, dict) else None,
        }

    def verify(self, token: str) -> str:
        """Verifies a bearer token and returns the subject id of its user."""
        return self.identify(token)["id"]
