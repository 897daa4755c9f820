"""Text search over annotated gallery images.

Signals add up rather than compete. ``match_type`` records the last rule
that matched in check order (caption, tags, text content, people, objects),
so a later, weaker rule can relabel an image already matched by caption.
File name matches add score without changing the label. The keyword
fallback only runs for images nothing else matched.
"""

import logging

import numpy as np

import config as cfg
from models import (
    MATCH_CAPTION,
    MATCH_SEMANTIC,
    MATCH_TAG,
    MATCH_TEXT,
    ImageItem,
    SearchResult,
)

logger = logging.getLogger(__name__)

CAPTION_WEIGHT = 0.9
TAG_WEIGHT = 0.8
TEXT_CONTENT_WEIGHT = 0.7
PEOPLE_WEIGHT = 0.8
OBJECTS_WEIGHT = 0.6
FILENAME_WEIGHT = 0.5
SEMANTIC_WEIGHT = 0.4

SEMANTIC_KEYWORDS: dict[str, list[str]] = {
    "sunset": ["orange", "evening", "sky", "horizon"],
    "beach": ["sand", "ocean", "water", "waves"],
    "mountain": ["peak", "landscape", "hiking", "nature"],
    "city": ["urban", "buildings", "lights", "skyline"],
    "nature": ["trees", "flowers", "outdoor", "landscape"],
    "coffee": ["morning", "drink", "cozy", "lifestyle"],
}


def normalize_query(query: str) -> str:
    return query.strip().lower()


def _any_contains(values: list[str] | None, term: str) -> bool:
    return bool(values) and any(term in v.lower() for v in values)


def _semantic_score(term: str, image: ImageItem) -> float:
    keywords = SEMANTIC_KEYWORDS.get(term)
    if not keywords:
        return 0.0
    caption = (image.caption or "").lower()
    tags = [t.lower() for t in image.tags]
    matched = [
        kw for kw in keywords
        if any(kw in t for t in tags) or kw in caption
    ]
    return SEMANTIC_WEIGHT * len(matched) / len(keywords)


def score_image(term: str, image: ImageItem) -> tuple[float, str]:
    """Score one image against an already-normalized query term."""
    score = 0.0
    match_type = MATCH_TEXT
    meta = image.metadata

    if image.caption and term in image.caption.lower():
        score += CAPTION_WEIGHT
        match_type = MATCH_CAPTION

    if image.tags:
        tag_matches = sum(1 for t in image.tags if term in t.lower())
        if tag_matches:
            score += TAG_WEIGHT * tag_matches / len(image.tags)
            match_type = MATCH_TAG

    if meta.text_content and term in meta.text_content.lower():
        score += TEXT_CONTENT_WEIGHT
        match_type = MATCH_TEXT

    if _any_contains(meta.people, term):
        score += PEOPLE_WEIGHT
        match_type = MATCH_SEMANTIC

    if _any_contains(meta.objects, term):
        score += OBJECTS_WEIGHT
        match_type = MATCH_SEMANTIC

    if term in image.file_name.lower():
        score += FILENAME_WEIGHT

    if score == 0:
        semantic = _semantic_score(term, image)
        if semantic > 0:
            score = semantic
            match_type = MATCH_SEMANTIC

    return score, match_type


def search_images(query: str, images: list[ImageItem]) -> list[SearchResult]:
    """Rank images for a query. Best first; equal scores ordered by image id."""
    term = normalize_query(query)
    if not term:
        return []

    results = []
    for image in images:
        score, match_type = score_image(term, image)
        if score > 0:
            results.append(SearchResult(item=image, score=score, match_type=match_type))

    results.sort(key=lambda r: (-r.score, r.item.id))
    return results


def find_similar(
    image_id: str, images: list[ImageItem], top_k: int | None = None,
) -> list[SearchResult]:
    """Rank other images by cosine similarity of their embeddings."""
    source = next((i for i in images if i.id == image_id), None)
    if source is None or not source.embedding:
        return []

    query = np.asarray(source.embedding, dtype=np.float32)
    candidates = [
        i for i in images
        if i.id != image_id and i.embedding and len(i.embedding) == len(query)
    ]
    if not candidates:
        return []

    matrix = np.asarray([c.embedding for c in candidates], dtype=np.float32)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, matrix @ query / norms, 0.0)

    order = sorted(range(len(candidates)), key=lambda k: (-sims[k], candidates[k].id))
    k = cfg.SIMILAR_TOP_K if top_k is None else top_k
    return [
        SearchResult(item=candidates[idx], score=float(sims[idx]), match_type=MATCH_SEMANTIC)
        for idx in order[:k]
        if sims[idx] > 0
    ]


class ImageSearch:
    """Search session over a gallery: busy flag, recent queries, suggestions."""

    def __init__(self, gallery):
        self._gallery = gallery
        self.is_searching = False
        self.recent_searches: list[str] = []
        self.suggested_searches = list(cfg.SUGGESTED_SEARCHES)

    def search(self, query: str) -> list[SearchResult]:
        self.is_searching = True
        try:
            results = search_images(query, list(self._gallery.images))
        finally:
            self.is_searching = False

        query = query.strip()
        if query:
            self._remember(query)
        logger.debug("Search %r: %d results", query, len(results))
        return results

    def _remember(self, query: str) -> None:
        recent = [q for q in self.recent_searches if q != query]
        self.recent_searches = [query, *recent][: cfg.MAX_RECENT_SEARCHES]

    def suggestions(self, query: str) -> list[str]:
        """Distinct tags containing the query, in gallery order."""
        term = normalize_query(query)
        matches = [t for t in self._gallery.all_tags() if term in t.lower()]
        return matches[: cfg.MAX_SUGGESTIONS]

    def find_similar(self, image_id: str, top_k: int | None = None) -> list[SearchResult]:
        return find_similar(image_id, list(self._gallery.images), top_k)
