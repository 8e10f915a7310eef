"""Attachment fetching for image and PDF inputs."""

from __future__ import annotations

import io
from dataclasses import dataclass

import requests
from pypdf import PdfReader

from src.errors import AttachmentFetchFailed
from src.logger import get_logger

logger = get_logger(__name__)

PDF_MIME = "application/pdf"
IMAGE_EXTENSIONS = {".jpg": "image/jpeg", ".jpeg": "image/jpeg", ".png": "image/png"}


@dataclass
class FetchedAttachment:
    """Downloaded attachment bytes and the content type to send with them."""

    url: str
    content: bytes
    content_type: str

    @property
    def is_pdf(self) -> bool:
        return self.content_type == PDF_MIME or self.content[:5] == b"%PDF-"

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


def _guess_type(url: str, hint: str = "") -> str:
    if hint:
        return hint
    path = url.split("?", 1)[0].lower()
    if path.endswith(".pdf"):
        return PDF_MIME
    for ext, mime in IMAGE_EXTENSIONS.items():
        if path.endswith(ext):
            return mime
    return "application/octet-stream"


def extract_pdf_text(content: bytes) -> str:
    """Return the text layer of a PDF, page by page, or "" when it has none."""
    reader = PdfReader(io.BytesIO(content))
    texts: list[str] = []
    for page in reader.pages:
        page_text = page.extract_text() or ""
        if page_text.strip():
            texts.append(page_text.strip())
    return "\n\n".join(texts).strip()


class AttachmentFetcher:
    """``fetch(url) -> bytes, content_type`` against attachment storage."""

    def __init__(self, timeout_s: float = 30.0, http: requests.Session | None = None):
        self.timeout_s = timeout_s
        self._http = http or requests.Session()

    def fetch(self, url: str, type_hint: str = "") -> FetchedAttachment:
        """Download one attachment.

        The response Content-Type wins over ``type_hint``, which wins over the
        URL extension.
        """
        try:
            response = self._http.get(url, timeout=self.timeout_s)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise AttachmentFetchFailed(f"Could not fetch attachment {url}: {exc}", exc) from exc

        header = (response.headers.get("Content-Type") or "").split(";", 1)[0].strip()
        if header == "application/octet-stream":
            header = ""
        content_type = header or _guess_type(url, type_hint)
        logger.debug("Fetched attachment (bytes=%d, type=%s)", len(response.content), content_type)
        return FetchedAttachment(url=url, content=response.content, content_type=content_type)
