"""
Label rendering client – ZPL → PDF/PNG through a Labelary-compatible HTTP API.

Every call retries with exponential backoff (2**attempt * 1.5s). HTTP 429
responses, transport errors and undersized bodies are all retried; the last
error is raised as ``LabelApiError`` once retries are exhausted.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

import requests

import config

logger = logging.getLogger("zpl.renderer")

BACKOFF_BASE = 1.5  # seconds


class LabelApiError(RuntimeError):
    """Raised when the rendering API cannot produce a usable response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class LabelRenderClient:
    def __init__(
        self,
        base_url: str = config.LABEL_API_URL,
        dpmm: int = config.LABEL_DPMM,
        label_size: str = config.LABEL_SIZE,
        *,
        max_retries: int = 3,
        timeout: float = config.REQUEST_TIMEOUT,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.dpmm = dpmm
        self.label_size = label_size
        self.max_retries = max_retries
        self.timeout = timeout
        self.session = session or requests.Session()
        self.sleep = sleep

    @property
    def labels_url(self) -> str:
        return f"{self.base_url}/{self.dpmm}dpmm/labels/{self.label_size}/"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def render_pdf(self, zpl: str, max_retries: int | None = None) -> bytes:
        """Render one or more labels into a single PDF, one page per label."""
        return self._post_with_retry(
            self.labels_url, zpl, {"Accept": "application/pdf"},
            min_bytes=config.MIN_PDF_BYTES, max_retries=max_retries,
        )

    def render_png(self, zpl: str, max_retries: int | None = None) -> bytes:
        """Render the first label of ``zpl`` as a PNG image."""
        return self._post_with_retry(
            self.labels_url + "0/", zpl, {"Accept": "image/png"},
            min_bytes=1, max_retries=max_retries,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _post_with_retry(
        self,
        url: str,
        body: str,
        headers: dict[str, str],
        min_bytes: int,
        max_retries: int | None = None,
    ) -> bytes:
        retries = self.max_retries if max_retries is None else max_retries
        headers = {"Content-Type": "application/x-www-form-urlencoded", **headers}
        last_error: LabelApiError | None = None

        for attempt in range(retries + 1):
            try:
                resp = self.session.post(
                    url, data=body.encode("utf-8"), headers=headers, timeout=self.timeout,
                )
                if resp.status_code == 429:
                    raise LabelApiError("Rate limit exceeded", status_code=429)
                if not resp.ok:
                    raise LabelApiError(
                        f"API error {resp.status_code}: {resp.text[:200]}",
                        status_code=resp.status_code,
                    )
                data = resp.content
                if len(data) < min_bytes:
                    raise LabelApiError(
                        f"Response too small ({len(data)} bytes), likely invalid"
                    )
                return data

            except requests.RequestException as e:
                last_error = LabelApiError(f"Request failed: {e}")
            except LabelApiError as e:
                last_error = e

            if attempt < retries:
                wait = (2 ** attempt) * BACKOFF_BASE
                logger.info(
                    "  Retry %d/%d in %.1fs: %s", attempt + 1, retries, wait, last_error,
                )
                self.sleep(wait)

        raise last_error
