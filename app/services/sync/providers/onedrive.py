"""
Microsoft OneDrive Connector
Microsoft Graph drive listing and item download
"""
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

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


def normalize_drive_item(raw_item: Dict[str, Any]) -> RemoteEntry:
    """
    Normalize a Graph driveItem.

    Folders carry a "folder" facet, files a "file" facet with a mimeType.
    Anything with neither (packages, notebooks) is not syncable.
    """
    file_facet = raw_item.get("file")
    is_file = bool(file_facet) and not raw_item.get("folder")

    size = raw_item.get("size")
    parent = raw_item.get("parentReference") or {}

    return RemoteEntry(
        id=raw_item.get("id"),
        name=raw_item.get("name") or "",
        is_file=is_file,
        mime_type=(file_facet or {}).get("mimeType"),
        size=size if isinstance(size, int) else None,
        modified_at=raw_item.get("lastModifiedDateTime"),
        source_path=parent.get("path") or "root",
        raw=raw_item,
    )


class OneDriveAdapter(ProviderAdapter):
    provider = Provider.MICROSOFT_ONEDRIVE
    label = "OneDrive"
    authorize_url = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
    token_url = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
    scopes = ("offline_access", "Files.Read", "User.Read")
    callback_slug = "microsoft-onedrive"
    client_id_setting = "microsoft_client_id"
    client_secret_setting = "microsoft_client_secret"
    oauth_app_name = "Microsoft"
    sends_redirect_on_refresh = True

    async def fetch_account(
        self,
        http_client: httpx.AsyncClient,
        access_token: str
    ) -> Tuple[Optional[str], Optional[str]]:
        response = await http_client.get(
            f"{GRAPH_BASE_URL}/me",
            headers={"Authorization": f"Bearer {access_token}"}
        )
        self._raise_for_status(response, "profile")
        info = response.json()
        return info.get("id"), info.get("mail") or info.get("userPrincipalName")

    async def list_entries(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        state: Dict[str, Any],
        page_size: int
    ) -> ListPage:
        """
        List one page of the drive root's children.

        Cursor state: {"nextLink": str | None}. The nextLink already encodes
        $top, so it is followed verbatim.
        """
        next_link = state.get("nextLink")
        headers = {"Authorization": f"Bearer {access_token}"}

        if next_link:
            response = await http_client.get(next_link, headers=headers)
        else:
            response = await http_client.get(
                f"{GRAPH_BASE_URL}/me/drive/root/children",
                params={"$top": str(page_size)},
                headers=headers
            )
        self._raise_for_status(response, "list")

        data = response.json()
        entries = [normalize_drive_item(item) for item in data.get("value", [])]

        logger.info(f"📄 OneDrive: fetched {len(entries)} entries ({'continuing' if next_link else 'from root'})")

        return ListPage(
            entries=entries,
            next_state={"nextLink": data.get("@odata.nextLink")}
        )

    async def download(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        entry: RemoteEntry
    ) -> DownloadedContent:
        """
        Download item content.

        Prefers the pre-authenticated @microsoft.graph.downloadUrl from the
        listing; falls back to /content, which redirects to the same place.
        """
        download_url = entry.raw.get("@microsoft.graph.downloadUrl")

        if download_url:
            response = await http_client.get(download_url, follow_redirects=True)
        else:
            response = await http_client.get(
                f"{GRAPH_BASE_URL}/me/drive/items/{entry.id}/content",
                headers={"Authorization": f"Bearer {access_token}"},
                follow_redirects=True
            )
        self._raise_for_status(response, "download")

        return DownloadedContent(
            body=response.content,
            content_type=response.headers.get("content-type")
        )

    def normalize_entry(self, raw: Dict[str, Any]) -> RemoteEntry:
        return normalize_drive_item(raw)
