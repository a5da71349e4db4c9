"""
Azure Active Directory token providers for Azure Data Catalog
"""

import threading
import time
import logging
from typing import List, Optional
from dataclasses import dataclass

import msal

DEFAULT_AUTHORITY = "https://login.microsoftonline.com/common"
DEFAULT_SCOPES = ["https://api.azuredatacatalog.com/user_impersonation"]


class AuthenticationError(ConnectionError):
    """Raised when an access token cannot be acquired"""


@dataclass
class TokenInfo:
    """Token information for Azure Data Catalog authentication"""
    token: str
    expires_at: float  # Unix timestamp when the token stops being valid
    lock: threading.RLock

    def should_refresh(self, margin_seconds: float = 300.0) -> bool:
        """Check if token is expired or about to expire"""
        with self.lock:
            return time.time() >= self.expires_at - margin_seconds


class StaticTokenProvider:
    """Token provider for a token acquired out of band (ADC_ACCESS_TOKEN)"""

    def __init__(self, token: str):
        if not token:
            raise ValueError("A non-empty access token is required")
        self._token = token

    def get_token(self) -> str:
        return self._token

    def authorization_header(self) -> str:
        return f"Bearer {self._token}"


class MsalTokenProvider:
    """
    Acquires tokens with MSAL, signing in interactively when no cached
    account can be used silently.

    The token is cached and reused until it gets within refresh_margin_seconds
    of expiry; every caller asking for a header after that point triggers a
    refresh.
    """

    def __init__(self, client_id: str, authority: str = DEFAULT_AUTHORITY,
                 scopes: Optional[List[str]] = None, refresh_margin_seconds: float = 300.0,
                 app=None):
        """
        Args:
            client_id: Application (client) ID of the Azure AD app registration
            authority: OAuth2 authority URL
            scopes: Scopes to request, defaults to Data Catalog user impersonation
            refresh_margin_seconds: Refresh the token this long before it expires
            app: Optional pre-built msal client application
        """
        if not client_id and app is None:
            raise ValueError("ADC_CLIENT_ID environment variable is required for interactive sign-in")

        self._logger = logging.getLogger(__name__)
        self._app = app or msal.PublicClientApplication(client_id, authority=authority)
        self._scopes = scopes or list(DEFAULT_SCOPES)
        self._refresh_margin_seconds = refresh_margin_seconds
        self._token_info: Optional[TokenInfo] = None
        self._auth_lock = threading.RLock()

    def _acquire(self) -> dict:
        """Try the token cache first, then fall back to interactive sign-in"""
        accounts = self._app.get_accounts()
        if accounts:
            result = self._app.acquire_token_silent(self._scopes, account=accounts[0])
            if result and "access_token" in result:
                return result

        self._logger.info("Interactive sign-in required for Azure Data Catalog")
        return self._app.acquire_token_interactive(self._scopes, prompt="select_account")

    def _refresh_token(self):
        """Refresh authentication token"""
        with self._auth_lock:
            # Double-check: another caller may have just refreshed
            if (self._token_info is not None and
                    not self._token_info.should_refresh(self._refresh_margin_seconds)):
                return

            result = self._acquire()
            if not result or "access_token" not in result:
                result = result or {}
                raise AuthenticationError(
                    f"Azure AD authentication failed.\n"
                    f"Error: {result.get('error')}\n"
                    f"Description: {result.get('error_description')}"
                )

            expires_at = time.time() + float(result.get("expires_in", 3600))
            if self._token_info is None:
                self._token_info = TokenInfo(
                    token=result["access_token"],
                    expires_at=expires_at,
                    lock=threading.RLock()
                )
            else:
                with self._token_info.lock:
                    self._token_info.token = result["access_token"]
                    self._token_info.expires_at = expires_at

            self._logger.info("Azure AD token refreshed successfully")

    def get_token(self) -> str:
        """Get current valid token, refreshing if necessary"""
        if self._token_info is None or self._token_info.should_refresh(self._refresh_margin_seconds):
            self._refresh_token()

        with self._token_info.lock:
            return self._token_info.token

    def authorization_header(self) -> str:
        return f"Bearer {self.get_token()}"
