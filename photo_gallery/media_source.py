"""Read-only access to the device media library.

The library itself is an external collaborator; this module defines the
contract the gallery consumes and the sequential full-library load.
"""

import logging
from abc import ABC, abstractmethod

import config as cfg
from models import AssetPage, MediaAlbum, MediaAsset

logger = logging.getLogger(__name__)


class PermissionDeniedError(Exception):
    """The user refused access to the media library."""


class MediaSource(ABC):
    @abstractmethod
    async def request_access(self) -> bool:
        """Ask for library access. Returns True when granted."""

    @abstractmethod
    async def list_assets(self, page_size: int, cursor: str | None = None) -> AssetPage:
        """Return one page of photo assets, oldest cursor first."""

    @abstractmethod
    async def list_albums(self) -> list[MediaAlbum]:
        """Return every album the library exposes, smart albums included."""

    @abstractmethod
    async def get_album_cover_asset(self, album: MediaAlbum) -> MediaAsset | None:
        """Return one representative asset for the album, or None if it is empty."""


async def load_all_assets(
    source: MediaSource, page_size: int | None = None,
) -> list[MediaAsset]:
    """Page through the whole library.

    Pages are fetched one after another: each request needs the previous
    page's end cursor.
    """
    size = page_size or cfg.MEDIA_PAGE_SIZE
    assets: list[MediaAsset] = []
    cursor: str | None = None

    logger.info("Loading all photos from media library")
    while True:
        page = await source.list_assets(size, cursor)
        assets.extend(page.assets)
        logger.info(
            "Loaded %d photos, total: %d, has_next_page: %s",
            len(page.assets), len(assets), page.has_next_page,
        )
        if not page.has_next_page:
            break
        if not page.end_cursor or page.end_cursor == cursor:
            logger.warning("Media source reported more pages without a new cursor; stopping")
            break
        cursor = page.end_cursor

    logger.info("Finished loading all photos. Total: %d", len(assets))
    return assets


async def load_library(
    source: MediaSource, page_size: int | None = None,
) -> tuple[list[MediaAsset], list[MediaAlbum]]:
    """Request access, then load every asset and album.

    Raises PermissionDeniedError when access is refused.
    """
    if not await source.request_access():
        raise PermissionDeniedError("Media library access denied")

    assets = await load_all_assets(source, page_size)
    albums = await source.list_albums()
    logger.info("Loaded %d albums from media library", len(albums))
    return assets, albums
