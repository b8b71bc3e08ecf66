from __future__ import annotations

import os
import json
from dataclasses import dataclass
from typing import Mapping
from urllib.request import Request, urlopen
from urllib.parse import urlencode

from .oracle import DEFAULT_API_BASE, DEFAULT_MODEL


REQUIRED_KEYS = [
    "GEMINI_API_KEY",
]

DEFAULT_STORAGE_PATH = "data/medprice_storage.json"


def resolve_storage_path(environ: Mapping[str, str] | None = None) -> str:
    """Storage location for commands that never need the API key."""
    env = os.environ if environ is None else environ
    return env.get("MEDPRICE_STORAGE") or DEFAULT_STORAGE_PATH


_PLACEHOLDERS = {"PLACEHOLDER", "MASKED", ""}

# Infisical connection (read from env vars set in compose)
INFISICAL_URL = os.environ.get("INFISICAL_URL", "http://localhost:8089")
INFISICAL_CLIENT_ID = os.environ.get("INFISICAL_CLIENT_ID", "")
INFISICAL_CLIENT_SECRET = os.environ.get("INFISICAL_CLIENT_SECRET", "")
INFISICAL_PROJECT_ID = os.environ.get("INFISICAL_PROJECT_ID", "")


@dataclass(frozen=True)
class Config:
    gemini_api_key: str
    model: str = DEFAULT_MODEL
    api_base_url: str = DEFAULT_API_BASE
    storage_path: str = DEFAULT_STORAGE_PATH
    timeout_s: float | None = None

    @staticmethod
    def from_mapping(values: Mapping[str, str]) -> "Config":
        for k in REQUIRED_KEYS:
            if k not in values:
                raise RuntimeError(f"Missing config value: {k}")
            if (values[k] or "").strip() in _PLACEHOLDERS:
                raise RuntimeError(f"Config value {k} is still a placeholder")

        timeout = (values.get("MEDPRICE_TIMEOUT_S") or "").strip()
        return Config(
            gemini_api_key=values["GEMINI_API_KEY"].strip(),
            model=values.get("MEDPRICE_MODEL") or DEFAULT_MODEL,
            api_base_url=(values.get("MEDPRICE_API_BASE") or DEFAULT_API_BASE).rstrip("/"),
            storage_path=values.get("MEDPRICE_STORAGE") or DEFAULT_STORAGE_PATH,
            timeout_s=float(timeout) if timeout else None,
        )

    @staticmethod
    def load_from_env(environ: Mapping[str, str] | None = None) -> "Config":
        return Config.from_mapping(os.environ if environ is None else environ)

    @staticmethod
    def load_from_infisical(*, env: str = "dev") -> "Config":
        token = _infisical_login()
        secrets = _infisical_list_secrets(token, env=env)
        # local overrides (model, storage path) still come from the environment
        merged = {**os.environ, **secrets}
        return Config.from_mapping(merged)


def _infisical_login() -> str:
    """Get an access token via Universal Auth."""
    url = f"{INFISICAL_URL}/api/v1/auth/universal-auth/login"
    body = json.dumps({
        "clientId": INFISICAL_CLIENT_ID,
        "clientSecret": INFISICAL_CLIENT_SECRET,
    }).encode()
    req = Request(url, data=body, headers={"Content-Type": "application/json"}, method="POST")
    with urlopen(req, timeout=15) as resp:
        data = json.loads(resp.read())
    return data["accessToken"]


def _infisical_list_secrets(token: str, *, env: str = "dev") -> dict[str, str]:
    """List all secrets from Infisical for the given environment."""
    params = urlencode({
        "projectId": INFISICAL_PROJECT_ID,
        "environment": env,
        "secretPath": "/",
    })
    url = f"{INFISICAL_URL}/api/v4/secrets?{params}"
    req = Request(url, headers={"Authorization": f"Bearer {token}"}, method="GET")
    with urlopen(req, timeout=15) as resp:
        data = json.loads(resp.read())

    secrets: dict[str, str] = {}
    for s in data.get("secrets", []):
        secrets[s["secretKey"]] = s["secretValue"]
    return secrets
