"""Gallery data model: images, albums, annotations and media-source records."""

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum

MATCH_TEXT = "text"
MATCH_TAG = "tag"
MATCH_CAPTION = "caption"
MATCH_SEMANTIC = "semantic"

ANNOTATION_FIELDS = ("caption", "tags", "metadata", "embedding")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ms_to_iso(ms: float | None) -> str:
    """Convert an epoch-milliseconds timestamp to ISO-8601. Returns '' when unknown."""
    if not ms:
        return ""
    try:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()
    except (ValueError, OSError, OverflowError):
        return ""


@dataclass
class ImageMetadata:
    """AI-derived labels. None means "not analyzed", [] means "analyzed as empty"."""

    objects: list[str] | None = None
    colors: list[str] | None = None
    people: list[str] | None = None
    mood: str | None = None
    scene: str | None = None
    text_content: str | None = None
    location: dict | None = None  # {"latitude": float, "longitude": float}
    camera: dict | None = None  # {"make": str, "model": str}
    settings: dict | None = None  # {"iso": int, "aperture": float, "shutterSpeed": str}

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict | None) -> "ImageMetadata":
        if not data:
            return cls()
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class AnnotationRecord:
    caption: str | None = None
    tags: list[str] = field(default_factory=list)
    metadata: ImageMetadata = field(default_factory=ImageMetadata)
    embedding: list[float] | None = None

    def is_empty(self) -> bool:
        return (
            not self.caption
            and not self.tags
            and self.metadata.is_empty()
            and not self.embedding
        )

    def copy(self) -> "AnnotationRecord":
        return AnnotationRecord.from_dict(self.to_dict())

    def to_dict(self) -> dict:
        data: dict = {"tags": list(self.tags), "metadata": self.metadata.to_dict()}
        if self.caption is not None:
            data["caption"] = self.caption
        if self.embedding is not None:
            data["embedding"] = list(self.embedding)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "AnnotationRecord":
        return cls(
            caption=data.get("caption"),
            tags=list(data.get("tags") or []),
            metadata=ImageMetadata.from_dict(data.get("metadata")),
            embedding=data.get("embedding"),
        )


@dataclass
class ImageItem:
    id: str
    uri: str
    file_name: str
    created_at: str
    modified_at: str
    size: int = 0
    width: int = 0
    height: int = 0
    caption: str | None = None
    tags: list[str] = field(default_factory=list)
    metadata: ImageMetadata = field(default_factory=ImageMetadata)
    embedding: list[float] | None = None
    album_id: str | None = None

    def annotation(self) -> AnnotationRecord:
        return AnnotationRecord(
            caption=self.caption,
            tags=self.tags,
            metadata=self.metadata,
            embedding=self.embedding,
        ).copy()


@dataclass
class Album:
    id: str
    title: str
    count: int = 0
    cover_image: str | None = None
    created_at: str = ""
    source: str = "user"  # "device" or "user"

    @property
    def is_device(self) -> bool:
        return self.source == "device"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Album":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SearchResult:
    item: ImageItem
    score: float
    match_type: str = MATCH_TEXT


# ---------------------------------------------------------------------------
# Media source records
# ---------------------------------------------------------------------------


@dataclass
class MediaAsset:
    id: str
    uri: str
    filename: str
    creation_time: float = 0.0  # epoch ms
    modification_time: float = 0.0  # epoch ms
    width: int = 0
    height: int = 0
    size: int | None = None
    album_id: str | None = None


@dataclass
class MediaAlbum:
    id: str
    title: str
    asset_count: int = 0


@dataclass
class AssetPage:
    assets: list[MediaAsset]
    end_cursor: str | None = None
    has_next_page: bool = False


# ---------------------------------------------------------------------------
# Annotator output and ingestion status
# ---------------------------------------------------------------------------


@dataclass
class Analysis:
    caption: str | None = None
    tags: list[str] = field(default_factory=list)
    objects: list[str] = field(default_factory=list)
    colors: list[str] = field(default_factory=list)
    mood: str | None = None
    scene: str | None = None
    text_content: str | None = None
    people: list[str] = field(default_factory=list)
    embedding: list[float] | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "Analysis":
        return cls(
            caption=data.get("caption"),
            tags=list(data.get("tags") or []),
            objects=list(data.get("objects") or []),
            colors=list(data.get("colors") or []),
            mood=data.get("mood"),
            scene=data.get("scene"),
            text_content=data.get("textContent", data.get("text_content")),
            people=list(data.get("people") or []),
            embedding=data.get("embedding"),
        )

    def to_metadata(self) -> ImageMetadata:
        return ImageMetadata(
            objects=list(self.objects),
            colors=list(self.colors),
            people=list(self.people),
            mood=self.mood,
            scene=self.scene,
            text_content=self.text_content,
        )


class ProcessingState(str, Enum):
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMMITTING = "committing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ProcessingStatus:
    id: str
    state: ProcessingState = ProcessingState.PENDING
    progress: int = 0
    message: str = ""
