"""
Access token handling for a cloud account.
"""

import logging
import threading
from typing import List, Optional

import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_URI = "https://oauth2.googleapis.com/token"
DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/compute",
    "https://www.googleapis.com/auth/cloud-platform",
]


class AccessTokenProvider:
    """
    Exchanges an account's refresh token for a bearer access token.

    The access token is cached for the lifetime of the provider. Refreshes
    run under a per-account lock, so callers that arrive while a refresh is
    in flight wait for it and reuse its token.
    """

    def __init__(
        self,
        refresh_token: Optional[str] = None,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_uri: str = TOKEN_URI,
        scopes: Optional[List[str]] = None,
        access_token: Optional[str] = None,
    ):
        """
        Args:
            refresh_token: Long-lived OAuth2 refresh token
            client_id: OAuth2 client ID
            client_secret: OAuth2 client secret
            token_uri: Token endpoint
            scopes: Requested scopes
            access_token: Already issued access token, used until invalidated
        """
        self._token = access_token
        self._lock = threading.Lock()
        self._credentials = None
        if refresh_token:
            self._credentials = Credentials(
                token=None,
                refresh_token=refresh_token,
                token_uri=token_uri,
                client_id=client_id,
                client_secret=client_secret,
                scopes=scopes or DEFAULT_SCOPES,
            )
        self.refresh_count = 0

    def get_token(self) -> str:
        """
        Return the cached access token, refreshing it if absent.

        Raises:
            AuthError: If the token cannot be obtained
        """
        token = self._token
        if token:
            return token
        with self._lock:
            # Another caller may have refreshed while we waited.
            if self._token:
                return self._token
            self._token = self._refresh()
            return self._token

    def invalidate(self, token: str) -> None:
        """Drop ``token`` if it is still the cached one."""
        with self._lock:
            if self._token == token:
                logger.debug("Discarding rejected access token")
                self._token = None

    def _refresh(self) -> str:
        if self._credentials is None:
            raise AuthError(401, "No refresh token available to obtain an access token")
        logger.debug("Refreshing access token")
        try:
            self._credentials.refresh(Request())
        except google.auth.exceptions.RefreshError as e:
            raise AuthError(401, f"Token refresh failed: {e}") from e
        except google.auth.exceptions.TransportError as e:
            raise AuthError(0, f"Token endpoint unreachable: {e}") from e
        self.refresh_count += 1
        if not self._credentials.token:
            raise AuthError(401, "Token endpoint returned no access token")
        return self._credentials.token
