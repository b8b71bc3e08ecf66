import asyncio
import json
import threading
from unittest.mock import MagicMock, patch

import pytest

from medprice.analysis import Analyzer
from medprice.errors import (
    GENERIC_ANALYSIS_MESSAGE,
    AnalysisFailedError,
    AnalysisInProgressError,
    MalformedResponseError,
    OracleCallError,
    ValidationError,
)
from medprice.models import ImagePayload, Location
from medprice.oracle import GeminiClient, OracleReply
from medprice.store import CollectionStore, MemoryStorage


def _reply_text(name="Ventolin Inhaler", generic=None):
    data = {
        "medicationName": name,
        "dosage": "100mcg",
        "description": "Asthma reliever",
        "cheapestOption": "Boots",
        "averagePrice": "€7.00",
        "prices": [
            {"pharmacyName": "Boots", "price": "€6.50", "stockStatus": "In Stock",
             "distance": "0.5 km", "address": "1 Main St"},
        ],
    }
    if generic:
        data["genericAlternative"] = {"name": generic, "price": "€4.00", "savings": "€2.50"}
    return "Sure! " + json.dumps(data)


def _analyzer(reply=None, side_effect=None):
    client = MagicMock()
    if side_effect is not None:
        client.generate_content.side_effect = side_effect
    else:
        client.generate_content.return_value = reply
    store = CollectionStore(MemoryStorage())
    return Analyzer(client, store), client, store


def test_requires_query_or_image():
    analyzer, client, _ = _analyzer()
    with pytest.raises(ValidationError):
        asyncio.run(analyzer.analyze("   "))
    client.generate_content.assert_not_called()


def test_success_records_history_and_links():
    chunks = [{"web": {"uri": "https://boots.ie/v", "title": "Boots"}}]
    analyzer, client, store = _analyzer(OracleReply(text=_reply_text(), grounding_chunks=chunks))

    result = asyncio.run(analyzer.analyze("Ventolin"))

    assert result.record.medication_name == "Ventolin Inhaler"
    assert [link.uri for link in result.links] == ["https://boots.ie/v"]
    assert [r.medication_name for r in store.history] == ["Ventolin Inhaler"]
    assert analyzer.last_result == result.record
    assert analyzer.generation == 1
    assert not analyzer.busy


def test_request_carries_image_and_location():
    analyzer, client, _ = _analyzer(OracleReply(text=_reply_text()))
    image = ImagePayload(data=b"\x89PNG", mime_type="image/png")

    asyncio.run(analyzer.analyze("", image=image, location=Location(53.35, -6.26)))

    request = client.generate_content.call_args.args[0]
    parts = request["contents"][0]["parts"]
    assert parts[1]["inlineData"] == {"mimeType": "image/png", "data": "iVBORw=="}
    assert request["toolConfig"]["retrievalConfig"]["latLng"] == {"latitude": 53.35, "longitude": -6.26}


def test_transport_failure_is_generic(caplog):
    analyzer, _, store = _analyzer(side_effect=OracleCallError("connection reset"))
    with pytest.raises(AnalysisFailedError) as excinfo:
        asyncio.run(analyzer.analyze("Ventolin"))
    assert str(excinfo.value) == GENERIC_ANALYSIS_MESSAGE
    assert isinstance(excinfo.value.__cause__, OracleCallError)
    assert "Oracle call failed" in caplog.text
    assert store.history == ()
    assert not analyzer.busy


def test_malformed_reply_is_generic_but_logged_apart(caplog):
    analyzer, client, store = _analyzer(OracleReply(text="I could not find that medication."))
    with pytest.raises(AnalysisFailedError) as excinfo:
        asyncio.run(analyzer.analyze("Ventolin"))
    assert str(excinfo.value) == GENERIC_ANALYSIS_MESSAGE
    assert isinstance(excinfo.value.__cause__, MalformedResponseError)
    assert "Malformed oracle reply" in caplog.text
    assert store.history == ()
    client.generate_content.assert_called_once()


def test_failure_clears_previous_result():
    analyzer, client, _ = _analyzer(OracleReply(text=_reply_text()))
    asyncio.run(analyzer.analyze("Ventolin"))
    client.generate_content.return_value = OracleReply(text="nope")
    with pytest.raises(AnalysisFailedError):
        asyncio.run(analyzer.analyze("Ventolin"))
    assert analyzer.last_result is None
    assert analyzer.last_links == []


def test_overlapping_call_is_rejected():
    release = threading.Event()
    started = threading.Event()

    def slow(request):
        started.set()
        release.wait(5)
        return OracleReply(text=_reply_text())

    analyzer, _, _ = _analyzer(side_effect=slow)

    async def scenario():
        first = asyncio.create_task(analyzer.analyze("Ventolin"))
        while not started.is_set():
            await asyncio.sleep(0.01)
        with pytest.raises(AnalysisInProgressError):
            await analyzer.analyze("Paracetamol")
        release.set()
        return await first

    result = asyncio.run(scenario())
    assert result.record.medication_name == "Ventolin Inhaler"
    assert analyzer.generation == 1


def test_switch_to_generic_runs_new_analysis():
    analyzer, client, store = _analyzer(OracleReply(text=_reply_text(generic="Salbutamol")))
    first = asyncio.run(analyzer.analyze("Ventolin"))

    client.generate_content.return_value = OracleReply(text=_reply_text(name="Salbutamol"))
    generic = asyncio.run(analyzer.switch_to_generic(first.record))

    assert generic.record.medication_name == "Salbutamol"
    request = client.generate_content.call_args.args[0]
    assert request["contents"][0]["parts"][0]["text"].endswith("Input: Salbutamol")
    assert [r.medication_name for r in store.history] == ["Salbutamol", "Ventolin Inhaler"]


def test_switch_to_generic_without_alternative():
    analyzer, client, _ = _analyzer(OracleReply(text=_reply_text()))
    record = asyncio.run(analyzer.analyze("Ventolin")).record
    with pytest.raises(ValidationError):
        asyncio.run(analyzer.switch_to_generic(record))
    assert client.generate_content.call_count == 1


def test_odd_oracle_envelope_is_generic_failure():
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = {"candidates": ["oops"]}
    analyzer = Analyzer(GeminiClient(api_key="k"), CollectionStore(MemoryStorage()))
    with patch("medprice.http.requests.post", return_value=resp):
        with pytest.raises(AnalysisFailedError) as excinfo:
            asyncio.run(analyzer.analyze("Ventolin"))
    assert isinstance(excinfo.value.__cause__, MalformedResponseError)
