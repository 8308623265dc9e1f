"""
Data Source Providers
Adapter registry for the cloud drives the file sync mirrors (Drive, OneDrive, Dropbox)
"""
from typing import Dict, Optional

from app.services.sync.providers.base import (
    DownloadedContent,
    ListPage,
    Provider,
    ProviderAdapter,
    RemoteEntry,
    TokenGrant,
)
from app.services.sync.providers.dropbox import DropboxAdapter
from app.services.sync.providers.google_drive import GoogleDriveAdapter
from app.services.sync.providers.onedrive import OneDriveAdapter

PROVIDER_ADAPTERS: Dict[Provider, ProviderAdapter] = {
    Provider.GOOGLE_DRIVE: GoogleDriveAdapter(),
    Provider.MICROSOFT_ONEDRIVE: OneDriveAdapter(),
    Provider.DROPBOX: DropboxAdapter(),
}

SUPPORTED_PROVIDERS = [p.value for p in PROVIDER_ADAPTERS]


def get_adapter(provider: str) -> ProviderAdapter:
    """
    Look up the adapter for a provider value.

    Raises:
        ValueError: If the provider is not supported
    """
    return PROVIDER_ADAPTERS[Provider(provider)]


def adapter_for_slug(slug: str) -> Optional[ProviderAdapter]:
    """Resolve a URL slug (google-drive, microsoft-onedrive, dropbox) or enum value."""
    for adapter in PROVIDER_ADAPTERS.values():
        if slug in (adapter.callback_slug, adapter.provider.value):
            return adapter
    return None


__all__ = [
    "DownloadedContent",
    "ListPage",
    "Provider",
    "ProviderAdapter",
    "RemoteEntry",
    "TokenGrant",
    "PROVIDER_ADAPTERS",
    "SUPPORTED_PROVIDERS",
    "get_adapter",
    "adapter_for_slug",
]
