"""AI annotation of images.

Inference runs elsewhere; an Annotator turns an image reference into an
Analysis (caption, tags, objects, colors, mood, scene, OCR text, people,
embedding). Calls can take seconds and can fail.
"""

import asyncio
import logging
import mimetypes
from abc import ABC, abstractmethod
from pathlib import Path

import httpx

import config as cfg
from models import Analysis

logger = logging.getLogger(__name__)


class AnnotationError(Exception):
    """The annotator failed, timed out, or returned an unusable reply."""


class Annotator(ABC):
    @abstractmethod
    async def analyze(self, uri: str) -> Analysis:
        """Analyze the image at uri. Raises AnnotationError on failure."""


class HttpAnnotator(Annotator):
    """Posts images to a remote ``/process-image`` endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = (base_url or cfg.ANNOTATOR_URL).rstrip("/")
        if not self._base_url:
            raise ValueError("No annotator URL configured (GALLERY_ANNOTATOR_URL)")
        api_key = cfg.ANNOTATOR_API_KEY if api_key is None else api_key
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._http = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=timeout or cfg.ANNOTATOR_TIMEOUT,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def _request_body(self, uri: str) -> dict:
        path = Path(uri.removeprefix("file://"))
        if path.is_file():
            mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
            return {"files": {"image": (path.name, path.read_bytes(), mime)}}
        return {"data": {"uri": uri}}

    async def analyze(self, uri: str) -> Analysis:
        body = await asyncio.to_thread(self._request_body, uri)
        try:
            resp = await self._http.post("/process-image", **body)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.TimeoutException as exc:
            raise AnnotationError(f"Annotator timed out for {uri}") from exc
        except httpx.HTTPStatusError as exc:
            raise AnnotationError(
                f"Annotator returned {exc.response.status_code} for {uri}"
            ) from exc
        except httpx.HTTPError as exc:
            raise AnnotationError(f"Annotator request failed for {uri}: {exc}") from exc
        except ValueError as exc:
            raise AnnotationError(f"Annotator returned invalid JSON for {uri}") from exc

        if not isinstance(payload, dict):
            raise AnnotationError(f"Annotator returned {type(payload).__name__}, expected object")

        logger.debug("Annotated %s: %d tags", uri, len(payload.get("tags") or []))
        return Analysis.from_dict(payload)
