"""
Dropbox Connector
Dropbox v2 list_folder / download
"""
import json
import logging
from typing import Any, Dict, Optional, Tuple

import httpx

from app.services.sync.providers.base import (
    DownloadedContent,
    ListPage,
    Provider,
    ProviderAdapter,
    RemoteEntry,
)

logger = logging.getLogger(__name__)

DROPBOX_API_URL = "https://api.dropboxapi.com/2"
DROPBOX_CONTENT_URL = "https://content.dropboxapi.com/2"


def normalize_dropbox_entry(raw_entry: Dict[str, Any]) -> RemoteEntry:
    """
    Normalize a list_folder entry.

    The ".tag" discriminator is "file", "folder" or "deleted"; only files
    with a path can be downloaded.
    """
    size = raw_entry.get("size")

    return RemoteEntry(
        id=raw_entry.get("id") or raw_entry.get("path_lower") or "",
        name=raw_entry.get("name") or "",
        is_file=raw_entry.get(".tag") == "file" and bool(raw_entry.get("path_lower")),
        mime_type=None,
        size=size if isinstance(size, int) else None,
        modified_at=raw_entry.get("server_modified"),
        source_path=raw_entry.get("path_display") or raw_entry.get("path_lower"),
        raw=raw_entry,
    )


class DropboxAdapter(ProviderAdapter):
    provider = Provider.DROPBOX
    label = "Dropbox"
    authorize_url = "https://www.dropbox.com/oauth2/authorize"
    token_url = "https://api.dropboxapi.com/oauth2/token"
    callback_slug = "dropbox"
    client_id_setting = "dropbox_client_id"
    client_secret_setting = "dropbox_client_secret"
    oauth_app_name = "Dropbox"

    def extra_authorize_params(self) -> Dict[str, str]:
        # Scopes are fixed in the Dropbox app console
        return {"token_access_type": "offline"}

    def token_request(
        self,
        client_id: str,
        client_secret: str,
        form: Dict[str, str]
    ) -> Tuple[Dict[str, str], Optional[Tuple[str, str]]]:
        # Dropbox authenticates the app with HTTP Basic
        return dict(form), (client_id, client_secret)

    async def fetch_account(
        self,
        http_client: httpx.AsyncClient,
        access_token: str
    ) -> Tuple[Optional[str], Optional[str]]:
        response = await http_client.post(
            f"{DROPBOX_API_URL}/users/get_current_account",
            headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            content=b"null"
        )
        self._raise_for_status(response, "account lookup")
        info = response.json()
        return info.get("account_id"), info.get("email")

    async def list_entries(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        state: Dict[str, Any],
        page_size: int
    ) -> ListPage:
        """
        List the app folder root, or continue from a saved cursor.

        Cursor state: {"cursor": str | None, "hasMore": bool}. Dropbox cursors
        stay valid after has_more turns false, so a finished listing resumes
        as an incremental change feed.
        """
        cursor = state.get("cursor")
        headers = {"Authorization": f"Bearer {access_token}"}

        if cursor:
            response = await http_client.post(
                f"{DROPBOX_API_URL}/files/list_folder/continue",
                json={"cursor": cursor},
                headers=headers
            )
        else:
            response = await http_client.post(
                f"{DROPBOX_API_URL}/files/list_folder",
                json={"path": "", "recursive": False, "limit": page_size},
                headers=headers
            )
        self._raise_for_status(response, "list")

        data = response.json()
        entries = [normalize_dropbox_entry(e) for e in data.get("entries", [])]

        logger.info(f"📄 Dropbox: fetched {len(entries)} entries (has_more: {data.get('has_more', False)})")

        return ListPage(
            entries=entries,
            next_state={"cursor": data.get("cursor"), "hasMore": bool(data.get("has_more", False))}
        )

    async def download(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        entry: RemoteEntry
    ) -> DownloadedContent:
        path_lower = entry.raw.get("path_lower")

        response = await http_client.post(
            f"{DROPBOX_CONTENT_URL}/files/download",
            headers={
                "Authorization": f"Bearer {access_token}",
                "Dropbox-API-Arg": json.dumps({"path": path_lower})
            }
        )
        self._raise_for_status(response, "download")

        return DownloadedContent(
            body=response.content,
            content_type=response.headers.get("content-type")
        )

    def normalize_entry(self, raw: Dict[str, Any]) -> RemoteEntry:
        return normalize_dropbox_entry(raw)
