"""Inference backend handle -- one Ollama server and model per content class.

The handle is a scoped resource: entering it checks the server answers and
pulls the model if it is missing; leaving it closes the HTTP clients. Lane
workers receive the Summarizer / VisionClient it hands out, never the
backend itself. Starting the server (container or service) is outside the
pipeline; the handle expects it to be reachable.
"""

from __future__ import annotations

import httpx
from loguru import logger

from .ai import Summarizer, VisionClient, get_client
from .errors import ConfigError

log = logger.bind(stage="backend")


class OllamaBackend:
    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout: float = 300.0,
        pull: bool = True,
        http: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.pull = pull
        self._http = http
        self._owns_http = http is None
        self._client = None
        self._vision_clients: list[VisionClient] = []

    def __enter__(self) -> OllamaBackend:
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            raise ConfigError(f"Backend {self.base_url} used before acquire()")
        return self._http

    def acquire(self) -> None:
        """Verify the server is up and the model is available.

        Raises ConfigError when the server cannot be reached or the model is
        missing and pulling is disabled or fails -- both are fatal at startup.
        """
        if self._http is None:
            self._http = httpx.Client(timeout=self.timeout)
        log.info(f"Acquiring backend {self.base_url} model={self.model}")

        models = self.list_models()
        if self._has_model(models):
            log.info(f"Model {self.model} available on {self.base_url}")
            return
        if not self.pull:
            raise ConfigError(f"Model {self.model} not present on {self.base_url}")
        self.pull_model()

    def release(self) -> None:
        """Close every client handed out or opened by this backend.

        Safe to call without a prior acquire() (dry runs build handlers but
        never acquire).
        """
        for vision in self._vision_clients:
            vision.close()
        self._vision_clients.clear()
        if self._client is not None:
            self._client.close()
            self._client = None
        if self._http is not None and self._owns_http:
            self._http.close()
            self._http = None
        log.debug(f"Released backend {self.base_url}")

    def list_models(self) -> list[str]:
        try:
            resp = self.http.get(f"{self.base_url}/api/tags")
            resp.raise_for_status()
            return [m.get("name", "") for m in resp.json().get("models", [])]
        except (httpx.HTTPError, ValueError) as e:
            raise ConfigError(f"Ollama at {self.base_url} is not reachable: {e}") from e

    def pull_model(self) -> None:
        """Pull the model; this can take several minutes for large models."""
        log.info(f"Pulling {self.model} on {self.base_url} (may take several minutes)")
        try:
            resp = self.http.post(
                f"{self.base_url}/api/pull",
                json={"model": self.model, "stream": False},
                timeout=None,
            )
            resp.raise_for_status()
            status = resp.json().get("status", "")
        except (httpx.HTTPError, ValueError) as e:
            raise ConfigError(f"Pulling {self.model} failed: {e}") from e
        if status != "success":
            raise ConfigError(f"Pulling {self.model} ended with status {status!r}")
        log.info(f"Pulled {self.model}")

    def _has_model(self, names: list[str]) -> bool:
        wanted = self.model if ":" in self.model else f"{self.model}:latest"
        return wanted in names or self.model in names

    def summarizer(self, temperature: float = 0.0) -> Summarizer:
        if self._client is None:
            self._client = get_client(self.base_url, self.api_key, self.timeout)
        return Summarizer(self._client, self.model, temperature=temperature)

    def vision_client(self) -> VisionClient:
        """A VisionClient sharing this backend's HTTP client once acquired.

        Before acquire() the VisionClient opens its own client on first use;
        release() closes it either way.
        """
        vision = VisionClient(self.base_url, self.model, timeout=self.timeout, http=self._http)
        self._vision_clients.append(vision)
        return vision
