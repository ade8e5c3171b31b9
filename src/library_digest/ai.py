"""Summaries and image descriptions from an Ollama backend.

Documents go through Ollama's OpenAI-compatible /v1 endpoint with the
openai SDK. Images go straight to the native /api/chat endpoint over httpx,
since that is the one that accepts base64 images alongside the prompt.
"""

from __future__ import annotations

import threading

import httpx
import openai
from loguru import logger

from .errors import InferenceError

log = logger.bind(stage="ai")

DOCUMENT_PROMPT = """\
This is the file path of a document: {path}

Below is the full content of the document:
{text}

Summarize the document.{ignore} Use the file path to discover dates, \
locations, organizations, occasions, and other entities for context."""

IMAGE_PROMPT = """\
This is the file path of an image: {path}

Please provide a comprehensive summary that:
    1. Describes as much detail as possible about the image by using the image \
itself and the file path to discover dates, locations, organizations, \
occasions, and other entities for context.{ignore}
    2. Notes prominent locations and prominent individuals if you can identify \
them in the image. Do not guess."""


def _ignore_clause(report_identifier: str) -> str:
    if not report_identifier:
        return ""
    return f' Ignore "{report_identifier}" in the path.'


def document_prompt(path: str, text: str, report_identifier: str = "") -> str:
    """Summarization prompt embedding the display path and the full text."""
    return DOCUMENT_PROMPT.format(
        path=path, text=text, ignore=_ignore_clause(report_identifier)
    )


def image_prompt(path: str, report_identifier: str = "") -> str:
    """Vision prompt built from the display path."""
    return IMAGE_PROMPT.format(path=path, ignore=_ignore_clause(report_identifier))


def get_client(base_url: str, api_key: str = "", timeout: float = 300.0):
    """Return an OpenAI client for an Ollama server, or None if base_url is empty.

    Accepts the server root with or without the /v1 suffix.
    """
    if not base_url:
        return None

    clean_url = base_url.rstrip("/")
    if not clean_url.endswith("/v1"):
        clean_url += "/v1"

    return openai.OpenAI(
        base_url=clean_url,
        api_key=api_key or "ollama",
        timeout=timeout,
        max_retries=1,
    )


class Summarizer:
    """summarize(prompt) -> text via chat completions."""

    def __init__(self, client, model: str, temperature: float = 0.0) -> None:
        self.client = client
        self.model = model
        self.temperature = temperature

    def summarize(self, prompt: str) -> str:
        log.debug(f"Summarizing with {self.model} ({len(prompt):,} prompt chars)")
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
            )
        except openai.APIStatusError as e:
            raise InferenceError(
                f"{self.model} returned HTTP {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIError as e:
            raise InferenceError(f"{self.model} request failed: {e}") from e

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError, TypeError) as e:
            raise InferenceError(f"Malformed completion from {self.model}: {e}") from e
        if not content or not content.strip():
            raise InferenceError(f"Empty completion from {self.model}")
        return content.strip()


class VisionClient:
    """describe_image(prompt, base64) -> text via Ollama /api/chat."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 300.0,
        http: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self._http = http
        self._owns_http = http is None
        self._lock = threading.Lock()

    @property
    def http(self) -> httpx.Client:
        """The shared client if one was given, else one created on first use."""
        with self._lock:
            if self._http is None:
                self._http = httpx.Client(timeout=self.timeout)
            return self._http

    def build_request(self, prompt: str, encoded_image: str) -> dict:
        return {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": prompt,
                    "images": [encoded_image],
                }
            ],
            "stream": False,
        }

    def describe_image(self, prompt: str, encoded_image: str) -> str:
        url = f"{self.base_url}/api/chat"
        log.debug(f"POST {url} model={self.model} ({len(encoded_image):,} b64 chars)")
        try:
            resp = self.http.post(url, json=self.build_request(prompt, encoded_image))
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise InferenceError(
                f"{self.model} returned HTTP {e.response.status_code}: {e.response.text[:200]}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise InferenceError(f"{self.model} request failed: {e}") from e

        try:
            content = resp.json()["message"]["content"]
        except (ValueError, KeyError, TypeError) as e:
            raise InferenceError(f"Malformed response from {self.model}: {e}") from e
        if not isinstance(content, str) or not content.strip():
            raise InferenceError(f"Empty response from {self.model}")
        return content.strip()

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        with self._lock:
            if self._owns_http and self._http is not None:
                self._http.close()
                self._http = None
