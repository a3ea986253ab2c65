"""
Microsoft Entra ID (Azure AD) app-only authentication for Graph.

Reading every user's mailbox and chats requires application permissions
(Mail.Read, Chat.Read.All, User.Read.All) granted by a tenant admin, so we use
the OAuth 2.0 client credentials flow instead of a signed-in user:

1. MSAL exchanges client_id + client_secret for an app token
2. MSAL caches the token in memory and renews it shortly before expiry
3. GraphClient asks for a token before every request

Usage:
    from culturescope.graph.auth import GraphTokenProvider

    provider = GraphTokenProvider(client_id, client_secret, tenant_id)
    token = provider.get_token()
"""

import logging
from typing import Optional

from msal import ConfidentialClientApplication

from culturescope.config import settings

logger = logging.getLogger(__name__)


class GraphAuthError(Exception):
    """Raised when an app-only Graph token cannot be acquired."""
    pass


class GraphTokenProvider:
    """Acquires and caches app-only Graph access tokens via MSAL."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        tenant_id: str,
        scopes: Optional[list[str]] = None,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._authority = f"https://login.microsoftonline.com/{tenant_id}"
        self._scopes = scopes or settings.graph_scopes
        self._app: Optional[ConfidentialClientApplication] = None

    def _get_app(self) -> ConfidentialClientApplication:
        # Built on first use; MSAL contacts the authority when constructed
        if self._app is None:
            self._app = ConfidentialClientApplication(
                client_id=self._client_id,
                client_credential=self._client_secret,
                authority=self._authority,
            )
        return self._app

    def get_token(self) -> str:
        """
        Return a valid access token (from MSAL's cache when possible).

        Raises:
            GraphAuthError: If Entra ID rejects the credentials.
        """
        try:
            result = self._get_app().acquire_token_for_client(scopes=self._scopes)
        except (ValueError, OSError) as e:
            # ValueError: unknown tenant authority. OSError: network failure (requests errors subclass it)
            logger.error(
                "graph_auth.token_failed",
                extra={"action": "graph_auth.token_failed", "error": str(e)},
            )
            raise GraphAuthError(f"Could not reach Microsoft Entra ID: {e}") from e

        if "access_token" in result:
            logger.debug(
                "graph_auth.token_acquired",
                extra={
                    "action": "graph_auth.token_acquired",
                    "expires_in": result.get("expires_in"),
                    "from_cache": result.get("token_source") == "cache",
                },
            )
            return result["access_token"]

        error = result.get("error_description", result.get("error", "Unknown error"))
        logger.error(
            "graph_auth.token_failed",
            extra={"action": "graph_auth.token_failed", "error": error},
        )
        raise GraphAuthError(f"Could not acquire Microsoft Graph token: {error}")
