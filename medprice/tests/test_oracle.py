from unittest.mock import MagicMock, patch

import pytest
import requests

from medprice.errors import OracleCallError
from medprice.models import Location
from medprice.oracle import GeminiClient, build_request


def _response(status=200, body=None, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    if isinstance(body, Exception):
        resp.json.side_effect = body
    else:
        resp.json.return_value = body
    return resp


def test_build_request_enables_both_groundings():
    body = build_request("Paracetamol 500mg")
    assert body["tools"] == [{"googleSearch": {}}, {"googleMaps": {}}]
    assert "toolConfig" not in body
    assert "generationConfig" not in body
    parts = body["contents"][0]["parts"]
    assert len(parts) == 1
    assert parts[0]["text"].endswith("\n\nInput: Paracetamol 500mg")


def test_build_request_location_bias():
    body = build_request("x", location=Location(lat=51.5, lng=-0.12))
    assert body["toolConfig"] == {"retrievalConfig": {"latLng": {"latitude": 51.5, "longitude": -0.12}}}


def test_generate_content_reads_text_and_chunks():
    body = {
        "candidates": [{
            "content": {"parts": [{"text": "Here: "}, {"text": "{}"}]},
            "groundingMetadata": {"groundingChunks": [{"maps": {"uri": "u", "title": "t"}}]},
        }]
    }
    client = GeminiClient(api_key="k", model="gemini-test", api_base="https://api.example/v1beta")
    with patch("medprice.http.requests.post", return_value=_response(body=body)) as post:
        reply = client.generate_content({"contents": []})

    assert reply.text == "Here: {}"
    assert reply.grounding_chunks == [{"maps": {"uri": "u", "title": "t"}}]
    assert post.call_args.args[0] == "https://api.example/v1beta/models/gemini-test:generateContent"
    assert post.call_args.kwargs["headers"]["x-goog-api-key"] == "k"
    assert post.call_args.kwargs["timeout"] is None


def test_generate_content_without_candidates():
    client = GeminiClient(api_key="k")
    with patch("medprice.http.requests.post", return_value=_response(body={"candidates": []})):
        reply = client.generate_content({})
    assert reply.text == ""
    assert reply.grounding_chunks == []


def test_http_error_raises():
    client = GeminiClient(api_key="k")
    with patch("medprice.http.requests.post", return_value=_response(status=429, text="quota")):
        with pytest.raises(OracleCallError, match="429"):
            client.generate_content({})


def test_transport_error_raises():
    client = GeminiClient(api_key="k")
    with patch("medprice.http.requests.post", side_effect=requests.ConnectionError("down")):
        with pytest.raises(OracleCallError):
            client.generate_content({})


def test_non_json_body_raises():
    client = GeminiClient(api_key="k")
    with patch("medprice.http.requests.post", return_value=_response(body=ValueError("bad"))):
        with pytest.raises(OracleCallError):
            client.generate_content({})


@pytest.mark.parametrize("body", [
    {"candidates": ["oops"]},
    {"candidates": [{"content": {"parts": [{"text": None}]}}]},
    {"candidates": [{"content": "text"}]},
    {"candidates": [{"content": {"parts": "text"}, "groundingMetadata": "x"}]},
    {"candidates": "nope"},
    ["not", "an", "object"],
])
def test_odd_envelope_reads_as_empty_reply(body):
    client = GeminiClient(api_key="k")
    with patch("medprice.http.requests.post", return_value=_response(body=body)):
        reply = client.generate_content({})
    assert reply.text == ""
    assert reply.grounding_chunks == []


def test_non_string_parts_are_skipped():
    body = {"candidates": [{"content": {"parts": [{"text": None}, {"text": "{}"}, "junk"]}}]}
    client = GeminiClient(api_key="k")
    with patch("medprice.http.requests.post", return_value=_response(body=body)):
        assert client.generate_content({}).text == "{}"
