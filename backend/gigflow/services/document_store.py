"""Contract document storage.

The booking flow only keeps the reference returned here. Documents go to a
remote store when ``DOCUMENT_STORE_URL`` is set and to a local directory
otherwise.
"""

import logging
from pathlib import Path
from typing import Optional

import httpx

from ..core.config import settings

logger = logging.getLogger(__name__)


class LocalDocumentStore:
    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.CONTRACT_DOCUMENT_DIR)

    def store_contract_document(self, booking_id: int, rendered_content: str) -> str:
        self.root.mkdir(parents=True, exist_ok=True)
        existing = len(list(self.root.glob(f"booking-{booking_id}-contract-*.txt")))
        path = self.root / f"booking-{booking_id}-contract-{existing + 1}.txt"
        path.write_text(rendered_content, encoding="utf-8")
        logger.info("Contract document stored booking=%s path=%s", booking_id, path)
        return path.resolve().as_uri()


class HttpDocumentStore:
    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.Client] = None):
        self.base_url = (base_url or settings.DOCUMENT_STORE_URL).rstrip("/")
        self.client = client or httpx.Client(timeout=10.0)

    def store_contract_document(self, booking_id: int, rendered_content: str) -> str:
        url = f"{self.base_url}/contracts/booking-{booking_id}.txt"
        resp = self.client.put(url, content=rendered_content.encode("utf-8"), headers={"Content-Type": "text/plain"})
        resp.raise_for_status()
        body = resp.json() if resp.headers.get("content-type", "").startswith("application/json") else {}
        stored = body.get("url") or url
        logger.info("Contract document uploaded booking=%s url=%s", booking_id, stored)
        return stored


def get_document_store():
    if settings.DOCUMENT_STORE_URL:
        return HttpDocumentStore()
    return LocalDocumentStore()
