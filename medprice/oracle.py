from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

from .errors import OracleCallError
from .http import HttpClient
from .models import ImagePayload, Location

DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

PROMPT = """
You are MedPrice AI, a pharmacy transparency tool.
Analyze the medication or prescription (from text or image) and provide a price comparison across major pharmacies (e.g., Boots, LloydsPharmacy, local chemists).
Find real-time or realistic prices for this medication in Ireland/UK.

If an image is provided, it might be a medication box or a handwritten/printed prescription. Use OCR to identify the drug name, dosage, and quantity.

IMPORTANT: Your response MUST be ONLY a valid JSON object. Do not include any other text before or after the JSON.

JSON Schema:
{
  "medicationName": "Name of the drug",
  "dosage": "e.g., 500mg, 30 tablets",
  "description": "Brief description of what it's for",
  "cheapestOption": "Name of cheapest pharmacy",
  "averagePrice": "Average price string",
  "genericAlternative": {
    "name": "Generic Name",
    "price": "€X.XX",
    "savings": "€X.XX"
  },
  "prices": [
    {
      "pharmacyName": "Boots",
      "price": "€12.50",
      "stockStatus": "In Stock",
      "distance": "0.8 km",
      "address": "123 Main St, Dublin",
      "url": "https://www.boots.ie/..."
    },
    ... (at least 3-4 pharmacies)
  ]
}
""".strip()


@dataclass(frozen=True)
class OracleReply:
    text: str
    grounding_chunks: list[dict[str, Any]] = field(default_factory=list)


def build_request(
    query: str,
    *,
    image: ImagePayload | None = None,
    location: Location | None = None,
) -> dict[str, Any]:
    """Build a generateContent body with web and map grounding enabled.

    No responseMimeType is set: JSON output mode is rejected by the API when
    the googleMaps tool is on, so the reply is free text.
    """
    parts: list[dict[str, Any]] = [{"text": PROMPT + "\n\nInput: " + (query or "")}]
    if image is not None:
        parts.append({"inlineData": {"mimeType": image.mime_type, "data": image.b64()}})

    body: dict[str, Any] = {
        "contents": [{"role": "user", "parts": parts}],
        "tools": [{"googleSearch": {}}, {"googleMaps": {}}],
    }
    if location is not None:
        body["toolConfig"] = {
            "retrievalConfig": {
                "latLng": {"latitude": location.lat, "longitude": location.lng},
            }
        }
    return body


def _reply_from_json(data: Any) -> OracleReply:
    # odd envelopes read as an empty reply; the normalizer then rejects it
    if not isinstance(data, dict):
        return OracleReply(text="")
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return OracleReply(text="")
    first = candidates[0]

    content = first.get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        parts = []
    text = "".join(
        p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)
    )

    meta = first.get("groundingMetadata")
    raw_chunks = meta.get("groundingChunks") if isinstance(meta, dict) else None
    if not isinstance(raw_chunks, list):
        raw_chunks = []
    chunks = [c for c in raw_chunks if isinstance(c, dict)]
    return OracleReply(text=text, grounding_chunks=chunks)


class GeminiClient:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = DEFAULT_MODEL,
        api_base: str = DEFAULT_API_BASE,
        timeout_s: float | None = None,
    ):
        self.model = model
        self.http = HttpClient(base_url=api_base, api_key=api_key, timeout_s=timeout_s)

    def generate_content(self, request: dict[str, Any]) -> OracleReply:
        path = f"/models/{self.model}:generateContent"
        try:
            resp = self.http.post(path, json=request)
        except requests.RequestException as e:
            raise OracleCallError(f"Oracle request failed: {e}") from e
        if resp.status_code >= 400:
            raise OracleCallError(f"Oracle API error {resp.status_code}: {resp.text[:500]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise OracleCallError(f"Failed to decode JSON from oracle: {e}") from e
        return _reply_from_json(data)
