import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from annotator import AnnotationError, Annotator
from gallery import Gallery
from ingestion import IngestionPipeline, new_image_id
from models import Analysis, ProcessingState
from store import MemoryStore


def _analysis() -> Analysis:
    return Analysis(
        caption="A beautiful landscape photo with mountains and trees",
        tags=["landscape", "nature", "mountains"],
        objects=["mountain", "tree"],
        colors=["green", "blue"],
        mood="peaceful",
        scene="outdoor",
        text_content="",
        people=[],
        embedding=[0.5, 0.25],
    )


class _RecordingAnnotator(Annotator):
    """Returns a fixed analysis and records the pipeline state it saw."""

    def __init__(self, pipeline_ref: list):
        self._pipeline_ref = pipeline_ref
        self.seen: list[tuple[ProcessingState, int]] = []

    async def analyze(self, uri):
        pipeline = self._pipeline_ref[0]
        status = pipeline.queue[-1]
        self.seen.append((status.state, status.progress))
        return _analysis()


class _FailingStore(MemoryStore):
    async def set(self, key, value):
        raise OSError("disk full")


def _gallery(store=None) -> Gallery:
    gallery = Gallery(store or MemoryStore())
    asyncio.run(gallery.load())
    return gallery


def test_new_image_ids_are_unique():
    ids = {new_image_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("img_") for i in ids)


def test_process_commits_annotated_image():
    gallery = _gallery()
    ref: list = []
    annotator = _RecordingAnnotator(ref)
    pipeline = IngestionPipeline(gallery, annotator, clear_delay=0)
    ref.append(pipeline)

    image = asyncio.run(pipeline.process("ph://capture-1"))

    assert annotator.seen == [(ProcessingState.ANALYZING, 50)]
    assert gallery.images[0] is image
    assert image.caption.startswith("A beautiful landscape")
    assert image.metadata.objects == ["mountain", "tree"]
    assert image.metadata.people == []
    assert image.embedding == [0.5, 0.25]
    assert image.file_name.startswith("IMG_") and image.file_name.endswith(".jpg")
    assert image.size == 0
    assert gallery.annotation(image.id).tags == ["landscape", "nature", "mountains"]
    assert pipeline.queue == []


def test_process_reads_local_image_info(tmp_path):
    path = tmp_path / "capture.jpg"
    Image.new("RGB", (64, 48), color=(10, 20, 30)).save(path)
    annotator = AsyncMock(spec=Annotator)
    annotator.analyze.return_value = _analysis()
    pipeline = IngestionPipeline(_gallery(), annotator, clear_delay=0)

    image = asyncio.run(pipeline.process(str(path), file_name="capture.jpg"))

    annotator.analyze.assert_awaited_once_with(str(path))
    assert (image.width, image.height) == (64, 48)
    assert image.size == path.stat().st_size
    assert image.file_name == "capture.jpg"


def test_annotation_failure_marks_failed_and_skips_gallery():
    gallery = _gallery()
    annotator = AsyncMock(spec=Annotator)
    annotator.analyze.side_effect = AnnotationError("model offline")
    pipeline = IngestionPipeline(gallery, annotator, clear_delay=0)

    with pytest.raises(AnnotationError, match="model offline"):
        asyncio.run(pipeline.process("ph://x"))

    assert gallery.images == []
    assert gallery.annotation_count == 0
    [status] = pipeline.queue
    assert status.state == ProcessingState.FAILED
    assert "model offline" in status.message
    assert annotator.analyze.await_count == 1


def test_unexpected_annotator_error_is_wrapped():
    annotator = AsyncMock(spec=Annotator)
    annotator.analyze.side_effect = TimeoutError("slow")
    pipeline = IngestionPipeline(_gallery(), annotator, clear_delay=0)

    with pytest.raises(AnnotationError):
        asyncio.run(pipeline.process("ph://x"))


def test_commit_failure_marks_failed():
    annotator = AsyncMock(spec=Annotator)
    annotator.analyze.return_value = _analysis()
    gallery = _gallery(_FailingStore())
    pipeline = IngestionPipeline(gallery, annotator, clear_delay=0)

    with pytest.raises(OSError):
        asyncio.run(pipeline.process("ph://x"))

    assert gallery.images == []
    assert pipeline.queue[0].state == ProcessingState.FAILED


def test_without_annotator_commits_empty_annotation():
    gallery = _gallery()
    pipeline = IngestionPipeline(gallery, None, clear_delay=0)
    image = asyncio.run(pipeline.process("ph://x", album_id="album-1"))

    assert image.caption is None
    assert image.tags == []
    assert image.album_id == "album-1"
    assert gallery.annotation(image.id) is not None


def test_completed_entry_cleared_after_delay():
    pipeline = IngestionPipeline(_gallery(), None, clear_delay=0.01)

    async def run():
        image = await pipeline.process("ph://x")
        status = pipeline.status(image.id)
        assert status.state == ProcessingState.COMPLETED
        assert status.progress == 100
        await asyncio.sleep(0.05)
        return pipeline.queue

    assert asyncio.run(run()) == []


def test_process_many_continues_past_failures():
    gallery = _gallery()
    annotator = AsyncMock(spec=Annotator)

    async def analyze(uri):
        if uri == "ph://bad":
            raise AnnotationError("unreadable")
        return _analysis()

    annotator.analyze.side_effect = analyze
    pipeline = IngestionPipeline(gallery, annotator, clear_delay=0)

    added, failures = asyncio.run(
        pipeline.process_many(["ph://one", "ph://bad", "ph://two"])
    )

    assert [i.uri for i in added] == ["ph://one", "ph://two"]
    assert failures == {"ph://bad": "unreadable"}
    assert [i.uri for i in gallery.images] == ["ph://two", "ph://one"]


def test_gallery_closed_mid_analysis_reports_failure():
    gallery = _gallery()
    annotator = AsyncMock(spec=Annotator)

    async def analyze(uri):
        gallery.close()
        return _analysis()

    annotator.analyze.side_effect = analyze
    pipeline = IngestionPipeline(gallery, annotator, clear_delay=0)

    assert asyncio.run(pipeline.process("ph://x")) is None
    status = pipeline.queue[0]
    assert status.state == ProcessingState.FAILED
    assert status.message == "Gallery closed; image discarded"
    assert gallery.images == []


def test_process_many_counts_discarded_photos_as_failures():
    gallery = _gallery()
    gallery.close()
    pipeline = IngestionPipeline(gallery, None, clear_delay=0)

    added, failures = asyncio.run(pipeline.process_many(["ph://one"]))

    assert added == []
    assert failures == {"ph://one": "Gallery closed; image discarded"}
