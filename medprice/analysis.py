from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from .errors import (
    AnalysisFailedError,
    AnalysisInProgressError,
    MalformedResponseError,
    OracleCallError,
    ValidationError,
)
from .models import CitationLink, ImagePayload, Location, PriceRecord
from .normalize import normalize_reply
from .oracle import OracleReply, build_request
from .store import CollectionStore

logger = logging.getLogger(__name__)

SAMPLE_MEDS = [
    "Paracetamol 500mg",
    "Ventolin Inhaler",
    "Amoxicillin 250mg",
    "Loratadine 10mg",
]


class OracleClient(Protocol):
    def generate_content(self, request: dict[str, Any]) -> OracleReply: ...


@dataclass(frozen=True)
class AnalysisResult:
    record: PriceRecord
    links: list[CitationLink] = field(default_factory=list)


class Analyzer:
    """Runs one oracle analysis at a time and files results into history.

    A call made while another is still in flight is rejected with
    AnalysisInProgressError; the in-flight request is left to finish.
    """

    def __init__(self, client: OracleClient, store: CollectionStore):
        self.client = client
        self.store = store
        self.generation = 0
        self.last_result: PriceRecord | None = None
        self.last_links: list[CitationLink] = []
        self._in_flight = False

    @property
    def busy(self) -> bool:
        return self._in_flight

    async def analyze(
        self,
        query: str = "",
        image: ImagePayload | None = None,
        location: Location | None = None,
    ) -> AnalysisResult:
        query = (query or "").strip()
        if not query and image is None:
            raise ValidationError("Please provide a medication name or scan the packaging.")
        if self._in_flight:
            raise AnalysisInProgressError("An analysis is already running")

        self._in_flight = True
        self.generation += 1
        generation = self.generation
        self.last_result = None
        self.last_links = []
        try:
            request = build_request(query, image=image, location=location)
            reply = await asyncio.to_thread(self.client.generate_content, request)
            record, links = normalize_reply(reply.text, reply.grounding_chunks)
        except OracleCallError as e:
            logger.error("Oracle call failed (generation %d): %s", generation, e)
            raise AnalysisFailedError() from e
        except MalformedResponseError as e:
            logger.error("Malformed oracle reply (generation %d): %s", generation, e)
            raise AnalysisFailedError() from e
        finally:
            self._in_flight = False

        self.store.record_history(record)
        self.last_result = record
        self.last_links = links
        logger.info(
            "Analyzed %s: %d offers, %d citations",
            record.medication_name, len(record.offers), len(links),
        )
        return AnalysisResult(record=record, links=links)

    async def switch_to_generic(
        self,
        record: PriceRecord,
        location: Location | None = None,
    ) -> AnalysisResult:
        if record.generic_alternative is None:
            raise ValidationError(f"{record.medication_name} has no generic alternative")
        return await self.analyze(record.generic_alternative.name, location=location)
