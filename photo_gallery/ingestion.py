"""Annotate newly captured or imported photos and add them to the gallery.

Each asset moves through pending -> analyzing -> committing -> completed,
or ends in failed. Progress steps are for display only; a failed asset is
not retried and never reaches the gallery.
"""

import asyncio
import logging
import time
import uuid

import config as cfg
from annotator import AnnotationError, Annotator
from gallery import Gallery
from imaging import read_image_info
from models import Analysis, ImageItem, ProcessingState, ProcessingStatus, now_iso

logger = logging.getLogger(__name__)


def new_image_id() -> str:
    return f"img_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class IngestionPipeline:
    def __init__(
        self,
        gallery: Gallery,
        annotator: Annotator | None = None,
        clear_delay: float | None = None,
    ):
        self._gallery = gallery
        self._annotator = annotator
        self._clear_delay = cfg.PROCESSING_CLEAR_DELAY if clear_delay is None else clear_delay
        self._queue: dict[str, ProcessingStatus] = {}

    @property
    def queue(self) -> list[ProcessingStatus]:
        return list(self._queue.values())

    def status(self, image_id: str) -> ProcessingStatus | None:
        return self._queue.get(image_id)

    def dismiss(self, image_id: str) -> None:
        self._queue.pop(image_id, None)

    def _update(
        self,
        image_id: str,
        state: ProcessingState | None = None,
        progress: int | None = None,
        message: str | None = None,
    ) -> None:
        status = self._queue.get(image_id)
        if status is None:
            return
        if state is not None:
            status.state = state
        if progress is not None:
            status.progress = progress
        if message is not None:
            status.message = message

    def _schedule_clear(self, image_id: str) -> None:
        if self._clear_delay <= 0:
            self._queue.pop(image_id, None)
            return
        asyncio.get_running_loop().call_later(self._clear_delay, self.dismiss, image_id)

    async def _analyze(self, uri: str) -> Analysis:
        if self._annotator is None:
            return Analysis()
        try:
            return await self._annotator.analyze(uri)
        except AnnotationError:
            raise
        except Exception as exc:
            raise AnnotationError(f"Annotator failed for {uri}: {exc}") from exc

    async def process(
        self, uri: str, file_name: str | None = None, album_id: str | None = None,
    ) -> ImageItem | None:
        """Annotate one photo and commit it to the gallery.

        Raises AnnotationError when analysis fails; commit errors propagate
        unchanged. Either way the status is marked failed. Returns None, also
        marked failed, when the gallery was closed before the commit landed.
        """
        image_id = new_image_id()
        self._queue[image_id] = ProcessingStatus(id=image_id, message="Analyzing image...")

        try:
            self._update(image_id, ProcessingState.ANALYZING, 25, "Extracting features...")
            info = await asyncio.to_thread(read_image_info, uri)

            self._update(image_id, progress=50, message="Generating caption...")
            analysis = await self._analyze(uri)

            self._update(image_id, ProcessingState.COMMITTING, 75, "Saving to gallery...")
            timestamp = now_iso()
            image = ImageItem(
                id=image_id,
                uri=uri,
                file_name=file_name or f"IMG_{int(time.time() * 1000)}.jpg",
                created_at=timestamp,
                modified_at=timestamp,
                size=info.size,
                width=info.width,
                height=info.height,
                caption=analysis.caption,
                tags=list(analysis.tags),
                metadata=analysis.to_metadata(),
                embedding=analysis.embedding,
                album_id=album_id,
            )
            await self._gallery.add_image(image)
        except Exception as exc:
            logger.error("Error processing image %s: %s", uri, exc)
            self._update(image_id, ProcessingState.FAILED, message=f"Processing failed: {exc}")
            raise

        if self._gallery.closed:
            logger.info("Gallery closed; discarded %s", image_id)
            self._update(image_id, ProcessingState.FAILED, message="Gallery closed; image discarded")
            return None

        self._update(image_id, ProcessingState.COMPLETED, 100, "Complete!")
        self._schedule_clear(image_id)
        logger.info("Added %s (%d tags)", image_id, len(image.tags))
        return image

    async def process_many(
        self, uris: list[str], album_id: str | None = None,
    ) -> tuple[list[ImageItem], dict[str, str]]:
        """Import photos one after another.

        Returns (added images, {uri: error message}) so one bad photo does
        not stop the rest of a multi-select import.
        """
        added: list[ImageItem] = []
        failures: dict[str, str] = {}
        for uri in uris:
            try:
                image = await self.process(uri, album_id=album_id)
            except Exception as exc:
                failures[uri] = str(exc)
                continue
            if image is None:
                failures[uri] = "Gallery closed; image discarded"
            else:
                added.append(image)
        if failures:
            logger.warning("Imported %d of %d photos", len(added), len(uris))
        return added, failures
