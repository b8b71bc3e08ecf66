from __future__ import annotations

from dataclasses import dataclass
import requests


@dataclass(frozen=True)
class HttpClient:
    base_url: str
    api_key: str
    # None waits forever; the oracle call has no built-in timeout
    timeout_s: float | None = None

    def post(self, path: str, *, json: dict | None = None) -> requests.Response:
        url = self.base_url.rstrip("/") + "/" + path.lstrip("/")
        return requests.post(
            url,
            json=json,
            headers={
                "x-goog-api-key": self.api_key,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=self.timeout_s,
        )
