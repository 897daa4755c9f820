import os
from pathlib import Path

CACHE_DIR = Path(
    os.environ.get("GALLERY_CACHE_DIR", Path.home() / ".cache" / "photo-gallery")
).resolve()

STORE_DIR = CACHE_DIR / "store"

# Byte quota for the metadata store; 0 disables the limit.
STORE_QUOTA = int(os.environ.get("GALLERY_STORE_QUOTA", "0"))

# -- storage keys --

ANNOTATIONS_KEY = "ai-gallery-annotations"
ALBUMS_KEY = "ai-gallery-albums"
FAVORITES_KEY = "ai-gallery-favorites"  # reserved

# Records kept when the full annotation map is rejected for capacity.
ANNOTATION_FALLBACK_LIMIT = 1000

# -- media source --

MEDIA_PAGE_SIZE = 1000

# -- ingestion --

ANNOTATOR_URL = os.environ.get("GALLERY_ANNOTATOR_URL", "")
ANNOTATOR_API_KEY = os.environ.get("GALLERY_ANNOTATOR_API_KEY", "")
ANNOTATOR_TIMEOUT = float(os.environ.get("GALLERY_ANNOTATOR_TIMEOUT", "60"))

PROCESSING_CLEAR_DELAY = 2.0  # seconds a completed entry stays in the queue

# -- search --

MAX_RECENT_SEARCHES = 8
MAX_SUGGESTIONS = 5
SIMILAR_TOP_K = 20

SUGGESTED_SEARCHES = [
    "nature photos",
    "people smiling",
    "food and drinks",
    "animals",
    "night photos",
    "text in images",
]
