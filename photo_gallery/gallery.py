"""In-memory gallery state reconciled from the media library and stored annotations.

The media library is authoritative for which photos exist and their physical
attributes. The metadata store holds only AI annotations (keyed by asset id)
and user-created albums. The merged image list is rebuilt on every merge and
never persisted.

Every state change goes through the in-memory annotation map first and then
rewrites the whole map to the store. Overlapping async calls are not
serialized: whichever completes last determines the in-memory state.
"""

import asyncio
import dataclasses
import json
import logging
import uuid

import config as cfg
from media_source import MediaSource, PermissionDeniedError, load_library
from models import (
    ANNOTATION_FIELDS,
    Album,
    AnnotationRecord,
    ImageItem,
    ImageMetadata,
    MediaAlbum,
    MediaAsset,
    ms_to_iso,
    now_iso,
)
from store import MetadataStore, StorageCapacityError

logger = logging.getLogger(__name__)

SORT_KEYS = ("date", "name", "size")


def _parse_annotations(raw: str | None) -> dict[str, AnnotationRecord]:
    if not raw:
        return {}
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Annotation map is {type(data).__name__}, expected object")
    return {image_id: AnnotationRecord.from_dict(rec) for image_id, rec in data.items()}


def _parse_albums(raw: str | None) -> list[Album]:
    if not raw:
        return []
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError(f"Album list is {type(data).__name__}, expected array")
    return [Album.from_dict({**a, "source": "user"}) for a in data]


def _with_annotation(image: ImageItem, record: AnnotationRecord) -> ImageItem:
    rec = record.copy()
    return dataclasses.replace(
        image,
        caption=rec.caption,
        tags=rec.tags,
        metadata=rec.metadata,
        embedding=rec.embedding,
    )


class Gallery:
    def __init__(self, store: MetadataStore):
        self._store = store
        self.images: list[ImageItem] = []
        self._albums: list[Album] = []
        self._annotations: dict[str, AnnotationRecord] = {}
        # ids held in memory but left out of the last stored annotation map
        self._unsaved: set[str] = set()
        self.loading = True
        self._closed = False

    # -- lifecycle --

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop accepting state changes. Late async results become no-ops."""
        self._closed = True

    def _discard(self, operation: str) -> bool:
        if self._closed:
            logger.debug("Gallery closed; discarding %s", operation)
            return True
        return False

    async def load(self) -> None:
        """Load annotations and user albums from the store.

        Never raises. On failure the previous in-memory state is kept.
        """
        self.loading = True
        try:
            annotations = _parse_annotations(await self._store.get(cfg.ANNOTATIONS_KEY))
            user_albums = _parse_albums(await self._store.get(cfg.ALBUMS_KEY))
        except Exception:
            logger.exception("Error loading gallery data")
            return
        finally:
            self.loading = False

        if self._discard("load"):
            return
        for image_id in self._unsaved:
            if image_id in self._annotations and image_id not in annotations:
                annotations[image_id] = self._annotations[image_id]
        self._annotations = annotations
        device_albums = [a for a in self._albums if a.is_device]
        self._albums = device_albums + user_albums
        logger.info(
            "Loaded %d annotations and %d user albums",
            len(annotations), len(user_albums),
        )

    async def refresh(self) -> None:
        """Reload stored state. Does not re-query the media library."""
        await self.load()

    # -- media library merge --

    def _image_from_asset(self, asset: MediaAsset) -> ImageItem:
        created = ms_to_iso(asset.creation_time)
        image = ImageItem(
            id=asset.id,
            uri=asset.uri,
            file_name=asset.filename,
            created_at=created,
            modified_at=ms_to_iso(asset.modification_time) or created,
            size=asset.size or 0,
            width=asset.width,
            height=asset.height,
            album_id=asset.album_id,
        )
        record = self._annotations.get(asset.id)
        return _with_annotation(image, record) if record else image

    async def _resolve_cover(
        self, source: MediaSource | None, album: MediaAlbum,
    ) -> str | None:
        if source is None:
            return None
        try:
            asset = await source.get_album_cover_asset(album)
        except Exception:
            logger.warning("Could not resolve cover for album %s", album.id, exc_info=True)
            return None
        return asset.uri if asset else None

    async def merge_media_assets(
        self,
        assets: list[MediaAsset],
        albums: list[MediaAlbum],
        media_source: MediaSource | None = None,
    ) -> None:
        """Rebuild images and device albums from a media library snapshot.

        Cover lookups run concurrently and fail per album. Images and albums
        are assigned together once every lookup has settled, using the
        annotation map as it stands at that point.
        """
        if self._discard("merge"):
            return
        covers = await asyncio.gather(
            *(self._resolve_cover(media_source, album) for album in albums)
        )
        if self._discard("merge"):
            return

        device_albums = [
            Album(
                id=album.id,
                title=album.title,
                count=album.asset_count,
                cover_image=cover,
                source="device",
            )
            for album, cover in zip(albums, covers)
        ]
        user_albums = [a for a in self._albums if not a.is_device]

        self.images = [self._image_from_asset(a) for a in assets]
        self._albums = device_albums + user_albums

        annotated = sum(1 for a in assets if a.id in self._annotations)
        logger.info(
            "Merged %d photos (%d annotated) and %d device albums",
            len(assets), annotated, len(device_albums),
        )

    async def sync(self, media_source: MediaSource) -> None:
        """Load the whole media library and merge it.

        A refused permission leaves the gallery with an empty media collection.
        """
        try:
            assets, albums = await load_library(media_source)
        except PermissionDeniedError:
            logger.warning("Media library access denied; continuing without device photos")
            assets, albums = [], []
        await self.merge_media_assets(assets, albums, media_source)

    # -- image operations --

    async def add_image(self, image: ImageItem) -> None:
        """Store the image's annotation and put it at the head of the collection."""
        if self._discard(f"add of {image.id}"):
            return
        previous = self._annotations.pop(image.id, None)
        self._annotations[image.id] = image.annotation()
        try:
            await self._persist_annotations()
        except Exception:
            self._annotations.pop(image.id, None)
            if previous is not None:
                self._annotations[image.id] = previous
            raise
        if self._discard(f"add of {image.id}"):
            return
        self.images = [image] + [i for i in self.images if i.id != image.id]

    async def remove_image(self, image_id: str) -> None:
        """Delete an image and its annotation. Unknown ids are ignored."""
        if self._discard(f"removal of {image_id}"):
            return
        in_memory = any(i.id == image_id for i in self.images)
        if not in_memory and image_id not in self._annotations:
            return
        previous = self._annotations.pop(image_id, None)
        if previous is not None:
            try:
                await self._persist_annotations()
            except Exception:
                self._annotations[image_id] = previous
                raise
        self._unsaved.discard(image_id)
        self.images = [i for i in self.images if i.id != image_id]

    async def update_image(self, image_id: str, updates: dict) -> ImageItem | None:
        """Merge annotation fields into an image and its stored record.

        Only caption, tags, metadata and embedding may be updated; fields not
        named in ``updates`` are preserved. Returns None when the id is unknown.
        """
        unknown = set(updates) - set(ANNOTATION_FIELDS)
        if unknown:
            raise ValueError(f"Not annotation fields: {', '.join(sorted(unknown))}")
        if self._discard(f"update of {image_id}"):
            return None

        image = self.get_image(image_id)
        if image is None:
            return None

        fields = dict(updates)
        if "metadata" in fields and not isinstance(fields["metadata"], ImageMetadata):
            fields["metadata"] = ImageMetadata.from_dict(fields["metadata"])
        if "tags" in fields:
            fields["tags"] = list(fields["tags"] or [])

        record = self._annotations.pop(image_id, None) or image.annotation()
        record = dataclasses.replace(record, **fields).copy()
        if not record.is_empty():
            self._annotations[image_id] = record

        updated = _with_annotation(dataclasses.replace(image, modified_at=now_iso()), record)
        self.images = [updated if i.id == image_id else i for i in self.images]
        await self._persist_annotations()
        return updated

    def get_image(self, image_id: str) -> ImageItem | None:
        for image in self.images:
            if image.id == image_id:
                return image
        return None

    def annotation(self, image_id: str) -> AnnotationRecord | None:
        return self._annotations.get(image_id)

    @property
    def annotation_count(self) -> int:
        return len(self._annotations)

    # -- persistence --

    async def _persist_annotations(self) -> bool:
        """Write the full annotation map, falling back to the most recent records.

        Returns False when even the reduced write was rejected; the in-memory
        map keeps every record either way.
        """
        payload = {image_id: rec.to_dict() for image_id, rec in self._annotations.items()}
        try:
            await self._store.set(cfg.ANNOTATIONS_KEY, json.dumps(payload))
            self._unsaved = set()
            return True
        except StorageCapacityError:
            logger.warning(
                "Annotation map (%d records) exceeds storage capacity; "
                "retrying with the %d most recent",
                len(payload), cfg.ANNOTATION_FALLBACK_LIMIT,
            )

        limit = cfg.ANNOTATION_FALLBACK_LIMIT
        items = list(payload.items())
        recent = dict(items[-limit:] if limit > 0 else [])
        try:
            await self._store.set(cfg.ANNOTATIONS_KEY, json.dumps(recent))
        except StorageCapacityError:
            self._unsaved = set(payload)
            logger.error(
                "Reduced annotation write (%d records) also rejected; "
                "annotations are kept in memory only",
                len(recent),
            )
            return False
        self._unsaved = set(payload) - set(recent)
        logger.info("Stored %d of %d annotations", len(recent), len(payload))
        return True

    async def _persist_albums(self) -> bool:
        data = [a.to_dict() for a in self._albums if not a.is_device]
        try:
            await self._store.set(cfg.ALBUMS_KEY, json.dumps(data))
        except StorageCapacityError:
            logger.error("Album list rejected by storage; kept in memory only")
            return False
        return True

    # -- albums --

    @property
    def albums(self) -> list[Album]:
        """All albums, device first. User album counts come from the images."""
        counts: dict[str, int] = {}
        for image in self.images:
            if image.album_id:
                counts[image.album_id] = counts.get(image.album_id, 0) + 1
        return [
            a if a.is_device else dataclasses.replace(a, count=counts.get(a.id, 0))
            for a in self._albums
        ]

    def album_images(self, album_id: str) -> list[ImageItem]:
        return [i for i in self.images if i.album_id == album_id]

    async def create_album(self, title: str, cover_image: str | None = None) -> Album:
        title = title.strip()
        if not title:
            raise ValueError("Album title must not be empty")
        album = Album(
            id=f"album_{uuid.uuid4().hex[:12]}",
            title=title,
            cover_image=cover_image,
            created_at=now_iso(),
            source="user",
        )
        self._albums = self._albums + [album]
        await self._persist_albums()
        return album

    async def delete_album(self, album_id: str) -> bool:
        """Delete a user album and unlink its images. Device albums are read-only."""
        album = next((a for a in self._albums if a.id == album_id), None)
        if album is None:
            return False
        if album.is_device:
            raise ValueError(f"Album {album_id} belongs to the media library")
        self._albums = [a for a in self._albums if a.id != album_id]
        self.images = [
            dataclasses.replace(i, album_id=None) if i.album_id == album_id else i
            for i in self.images
        ]
        await self._persist_albums()
        return True

    # -- views --

    def sorted_images(self, sort_by: str = "date", tag: str | None = None) -> list[ImageItem]:
        if sort_by not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {sort_by}")
        images = [i for i in self.images if tag is None or tag in i.tags]
        if sort_by == "date":
            return sorted(images, key=lambda i: i.created_at, reverse=True)
        if sort_by == "name":
            return sorted(images, key=lambda i: i.file_name.lower())
        return sorted(images, key=lambda i: i.size, reverse=True)

    def all_tags(self) -> list[str]:
        seen: dict[str, None] = {}
        for image in self.images:
            for tag in image.tags:
                seen.setdefault(tag, None)
        return list(seen)

    def stats(self) -> dict:
        return {
            "images": len(self.images),
            "total_size": sum(i.size for i in self.images),
            "annotated": sum(1 for i in self.images if i.id in self._annotations),
            "albums": len(self._albums),
            "loading": self.loading,
        }
