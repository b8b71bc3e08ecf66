from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from .errors import MalformedResponseError
from .models import CitationLink, PriceRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParseResult:
    record: PriceRecord | None = None
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.record is not None


def extract_json_payload(text: str) -> str:
    """Cut the candidate JSON object out of a reply that may carry prose around it.

    Takes everything from the first ``{`` to the last ``}``. Without a
    usable brace pair the whole text is the candidate.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        return text
    return text[start:end + 1]


def parse_record(text: str) -> ParseResult:
    candidate = extract_json_payload(text or "")
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as exc:
        return ParseResult(reason=f"reply is not valid JSON: {exc}")

    try:
        record = PriceRecord.from_dict(data)
    except MalformedResponseError as exc:
        return ParseResult(reason=str(exc))
    return ParseResult(record=record)


def _link_from(source: Any) -> CitationLink | None:
    if not isinstance(source, dict):
        return None
    uri = source.get("uri")
    if not uri:
        return None
    return CitationLink(uri=str(uri), title=str(source.get("title") or uri))


def extract_citations(chunks: Iterable[Any] | None) -> list[CitationLink]:
    """Map grounding chunks to links; chunks that are neither web nor map are dropped."""
    links: list[CitationLink] = []
    for chunk in chunks or ():
        if not isinstance(chunk, dict):
            continue
        if chunk.get("web"):
            link = _link_from(chunk["web"])
        elif chunk.get("maps") or chunk.get("map"):
            link = _link_from(chunk.get("maps") or chunk.get("map"))
        else:
            link = None
        if link is not None:
            links.append(link)
    return links


def normalize_reply(
    text: str,
    chunks: Iterable[Any] | None = None,
) -> tuple[PriceRecord, list[CitationLink]]:
    result = parse_record(text)
    if not result.ok:
        logger.debug("Unparseable reply: %.500s", text)
        raise MalformedResponseError(result.reason or "no price record in reply")
    return result.record, extract_citations(chunks)
