"""
Google Drive Connector
Lists, classifies and downloads Drive files for the file sync job
"""
import logging
import httpx
from typing import Dict, Any, Optional, Tuple

from app.services.sync.providers.base import (
    DownloadedContent,
    ListPage,
    Provider,
    ProviderAdapter,
    RemoteEntry,
)

logger = logging.getLogger(__name__)

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"
GOOGLE_APPS_MIME_PREFIX = "application/vnd.google-apps"


def is_google_workspace_type(mime_type: Optional[str]) -> bool:
    """
    Folders and native Docs/Sheets/Slides share the google-apps prefix.

    They have no binary content to download, so the sync skips them.
    """
    return bool(mime_type) and mime_type.startswith(GOOGLE_APPS_MIME_PREFIX)


def normalize_drive_file(raw_file: Dict[str, Any]) -> RemoteEntry:
    """
    Normalize Google Drive file metadata.

    Drive API file structure:
    {
        "id": "1BxiMVs0XRA5nFMdKvBdBZjgmUUqptlbs74OgvE2upms",
        "name": "Q4 Financial Report.pdf",
        "mimeType": "application/pdf",
        "modifiedTime": "2024-01-16T14:20:00.000Z",
        "size": "245678",
        "parents": ["0BxiMVs0XRA5nFMdKvBdBZjgmUUqptlbs74OgvE"]
    }
    """
    mime_type = raw_file.get("mimeType") or ""

    size = None
    if raw_file.get("size"):
        try:
            size = int(raw_file["size"])
        except (TypeError, ValueError):
            logger.warning(f"Failed to parse size for Drive file {raw_file.get('id')}: {raw_file.get('size')}")

    return RemoteEntry(
        id=raw_file.get("id"),
        name=raw_file.get("name") or "",
        is_file=not is_google_workspace_type(mime_type),
        mime_type=mime_type or None,
        size=size,
        modified_at=raw_file.get("modifiedTime"),
        source_path="root",
        raw=raw_file,
    )


class GoogleDriveAdapter(ProviderAdapter):
    provider = Provider.GOOGLE_DRIVE
    label = "Google Drive"
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    scopes = (
        "https://www.googleapis.com/auth/drive.readonly",
        "https://www.googleapis.com/auth/userinfo.email",
    )
    callback_slug = "google-drive"
    client_id_setting = "google_client_id"
    client_secret_setting = "google_client_secret"
    oauth_app_name = "Google"

    def extra_authorize_params(self) -> Dict[str, str]:
        # offline + consent so Google returns a refresh token on every connect
        return {
            "scope": " ".join(self.scopes),
            "access_type": "offline",
            "prompt": "consent",
        }

    async def fetch_account(
        self,
        http_client: httpx.AsyncClient,
        access_token: str
    ) -> Tuple[Optional[str], Optional[str]]:
        response = await http_client.get(
            "https://www.googleapis.com/oauth2/v2/userinfo",
            headers={"Authorization": f"Bearer {access_token}"}
        )
        self._raise_for_status(response, "userinfo")
        info = response.json()
        return info.get("id"), info.get("email")

    async def list_entries(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        state: Dict[str, Any],
        page_size: int
    ) -> ListPage:
        """
        List one page of the user's Drive.

        Cursor state: {"pageToken": str | None}
        """
        params = {
            "pageSize": str(page_size),
            "fields": "nextPageToken, files(id,name,mimeType,size,modifiedTime,parents)",
            "q": "trashed = false",
            "spaces": "drive",
            # Stable order so a partially handled page can be re-listed
            "orderBy": "createdTime",
        }
        page_token = state.get("pageToken")
        if page_token:
            params["pageToken"] = page_token

        response = await http_client.get(
            DRIVE_FILES_URL,
            params=params,
            headers={"Authorization": f"Bearer {access_token}"}
        )
        self._raise_for_status(response, "list")

        data = response.json()
        entries = [normalize_drive_file(f) for f in data.get("files", [])]

        logger.info(f"📄 Drive: fetched {len(entries)} entries (pageToken: {page_token[:20] if page_token else 'none'}...)")

        return ListPage(
            entries=entries,
            next_state={"pageToken": data.get("nextPageToken")}
        )

    async def download(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        entry: RemoteEntry
    ) -> DownloadedContent:
        response = await http_client.get(
            f"{DRIVE_FILES_URL}/{entry.id}",
            params={"alt": "media"},
            headers={"Authorization": f"Bearer {access_token}"}
        )
        self._raise_for_status(response, "download")

        return DownloadedContent(
            body=response.content,
            content_type=response.headers.get("content-type")
        )

    def normalize_entry(self, raw: Dict[str, Any]) -> RemoteEntry:
        return normalize_drive_file(raw)
