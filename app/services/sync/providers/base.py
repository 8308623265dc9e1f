"""
Provider adapter interface
One implementation per cloud drive, selected by Provider enum
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from app.services.sync.errors import ProviderAPIError, TokenRefreshError

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    GOOGLE_DRIVE = "google_drive"
    MICROSOFT_ONEDRIVE = "microsoft_onedrive"
    DROPBOX = "dropbox"


@dataclass
class TokenGrant:
    """Result of a code exchange or refresh against a token endpoint."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    account_id: Optional[str] = None


@dataclass
class RemoteEntry:
    """A listed item normalized across providers."""
    id: str
    name: str
    is_file: bool
    mime_type: Optional[str] = None
    size: Optional[int] = None
    modified_at: Optional[str] = None
    source_path: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ListPage:
    entries: List[RemoteEntry]
    next_state: Dict[str, Any]


@dataclass
class DownloadedContent:
    body: bytes
    content_type: Optional[str] = None


class ProviderAdapter:
    """
    Translate the orchestrator's generic steps into one provider's wire API.

    Subclasses set the endpoint constants and implement list_entries,
    download and the raw-entry normalization. Token handling is shared:
    every provider speaks form-encoded OAuth2 against token_url.
    """

    provider: Provider
    label: str = ""
    authorize_url: str = ""
    token_url: str = ""
    scopes: Tuple[str, ...] = ()
    callback_slug: str = ""

    # Settings fields holding this provider's OAuth app credentials
    client_id_setting: str = ""
    client_secret_setting: str = ""
    oauth_app_name: str = ""
    # Microsoft rejects refresh grants without the original redirect_uri
    sends_redirect_on_refresh: bool = False

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def authorization_url(self, client_id: str, redirect_uri: str, state: str) -> str:
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
        }
        params.update(self.extra_authorize_params())
        return f"{self.authorize_url}?{urlencode(params)}"

    def extra_authorize_params(self) -> Dict[str, str]:
        return {"scope": " ".join(self.scopes)}

    def token_request(
        self,
        client_id: str,
        client_secret: str,
        form: Dict[str, str]
    ) -> Tuple[Dict[str, str], Optional[Tuple[str, str]]]:
        """
        Build (form, basic_auth) for a token call.

        Default: client credentials in the form body.
        """
        return {**form, "client_id": client_id, "client_secret": client_secret}, None

    async def _post_token(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        form: Dict[str, str]
    ) -> TokenGrant:
        data, auth = self.token_request(client_id, client_secret, form)
        response = await http_client.post(
            self.token_url,
            data=data,
            auth=auth,
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )

        if response.status_code >= 400:
            logger.error(f"{self.label} token endpoint returned {response.status_code}: {response.text[:300]}")
            raise TokenRefreshError(f"{self.label} token request failed ({response.status_code})")

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise TokenRefreshError(f"{self.label} token response missing access_token")

        expires_in = payload.get("expires_in")
        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=int(expires_in) if expires_in is not None else None,
            scope=payload.get("scope"),
            account_id=payload.get("account_id"),
        )

    async def refresh_access_token(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        redirect_uri: Optional[str] = None
    ) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            TokenRefreshError: If the provider rejects the refresh
        """
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        if redirect_uri:
            form["redirect_uri"] = redirect_uri
        return await self._post_token(http_client, client_id, client_secret, form)

    async def exchange_code(
        self,
        http_client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        code: str,
        redirect_uri: str
    ) -> TokenGrant:
        form = {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri}
        return await self._post_token(http_client, client_id, client_secret, form)

    async def fetch_account(
        self,
        http_client: httpx.AsyncClient,
        access_token: str
    ) -> Tuple[Optional[str], Optional[str]]:
        """Return (provider_user_id, email) for a freshly connected account."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def list_entries(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        state: Dict[str, Any],
        page_size: int
    ) -> ListPage:
        raise NotImplementedError

    async def download(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        entry: RemoteEntry
    ) -> DownloadedContent:
        raise NotImplementedError

    def normalize_entry(self, raw: Dict[str, Any]) -> RemoteEntry:
        raise NotImplementedError

    def is_file(self, raw: Dict[str, Any]) -> bool:
        return self.normalize_entry(raw).is_file

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.status_code >= 400:
            logger.error(f"❌ {self.label} {action} failed: {response.status_code}")
            logger.error(f"   URL: {response.request.url}")
            logger.error(f"   Response: {response.text[:500]}")
            raise ProviderAPIError(
                f"{self.label} {action} failed ({response.status_code})",
                status_code=response.status_code
            )
