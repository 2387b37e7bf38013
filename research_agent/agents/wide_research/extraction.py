"""Structured extraction from source content.

Inference-backed extraction is preferred; the regex extractor is the
fallback and never invents values that are not present in the text.
"""

import re
from typing import Any, Iterable, Optional

from loguru import logger
from pydantic import ValidationError

from research_agent.data_management.schemas.research_schema import SourceRecord
from research_agent.data_management.schemas.wide_research_schema import (
    CompanyItem,
    DateItem,
    ExtractedContent,
    FactItem,
    NumericItem,
)
from research_agent.llm.inference import InferenceService, parse_json_payload

MIN_CONTENT_LENGTH = 100
MAX_COMBINED_CONTENT = 25_000
MAX_COMPANIES = 20
MAX_FACTS = 10
MAX_DATES = 10
MAX_NUMBERS = 10
MAX_FACT_LENGTH = 300

COMPANY_PATTERNS = (
    re.compile(
        r"\b([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)*)\s+(?:Company|Corporation|Corp|Inc|Ltd|LLC|Group|Holdings|Holding)\b"
    ),
    re.compile(r"\b([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)*)\s+(?:IPO|files?\s+for\s+IPO|plans?\s+to\s+list)\b"),
    re.compile(r"\b([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)*)\s*\(([A-Z]{2,5}|\d{4})\)"),
)
_COMPANY_STOPWORDS = frozenset(
    {"the", "this", "that", "which", "where", "when", "what", "how", "new", "old",
     "first", "last", "said", "says", "according"}
)
_DATE = re.compile(
    r"\b((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},?\s+20\d{2}"
    r"|\d{4}-\d{2}-\d{2}"
    r"|Q[1-4]\s+20\d{2})\b"
)
_NUMBER = re.compile(
    r"((?:[$€£]|SAR\s?|USD\s?)?\d[\d,]*(?:\.\d+)?)\s*(billion|million|thousand|bn|mn|%|percent)",
    re.IGNORECASE,
)
_SENTENCE = re.compile(r"(?<=[.!?])\s+")

# Canonical field name -> wording that introduces it, in precedence order
FIELD_KEYWORDS: tuple[tuple[str, re.Pattern], ...] = (
    ("market_cap", re.compile(r"market\s+(?:cap|capitali[sz]ation|value)|valuation|valued\s+at", re.IGNORECASE)),
    ("revenue", re.compile(r"revenues?|sales|turnover", re.IGNORECASE)),
    ("profit", re.compile(r"net\s+income|profits?|earnings", re.IGNORECASE)),
    ("price", re.compile(r"(?:share|stock)\s+price|priced\s+at", re.IGNORECASE)),
    ("volume", re.compile(r"trading\s+volume", re.IGNORECASE)),
    ("shares", re.compile(r"shares\s+outstanding", re.IGNORECASE)),
)
MAX_KEYWORD_DISTANCE = 60
UNIT_MULTIPLIERS = {
    "billion": 1e9,
    "bn": 1e9,
    "million": 1e6,
    "mn": 1e6,
    "thousand": 1e3,
    "%": 1.0,
    "percent": 1.0,
}
PERCENT_UNITS = frozenset({"%", "percent"})

EXTRACTION_PROMPT = """Extract structured data relevant to the query from the sources below.
Use ONLY information present in the sources. Respond with ONLY a JSON object:
{{"companies": [{{"name": "", "ticker": null, "market": null, "action": null, "date": null, "value": null, "source_url": null}}],
 "key_facts": [{{"fact": "", "confidence": "high|medium|low", "source": null}}],
 "key_dates": [{{"date": "", "event": "", "entity": null}}],
 "numeric_data": [{{"metric": "", "value": "", "unit": null, "context": null}}]}}

Query: {query}"""


def combine_content(sources: Iterable[SourceRecord]) -> str:
    return "\n\n---\n\n".join(f"Source: {s.url}\n{s.content}" for s in sources)


def extract_company_names(content: str) -> list[str]:
    names: list[str] = []
    for pattern in COMPANY_PATTERNS:
        for match in pattern.finditer(content):
            name = match.group(1).strip()
            if 3 < len(name) < 50 and name.lower() not in _COMPANY_STOPWORDS and name not in names:
                names.append(name)
    return names[:MAX_COMPANIES]


def heuristic_extract(query: str, sources: Iterable[SourceRecord]) -> ExtractedContent:
    """
    Regex extraction of companies, dated events, figures and fact sentences.

    Every item is copied from the source text and attributed to its source URL.
    """
    query_terms = {w.lower() for w in query.split() if len(w) > 3}
    data = ExtractedContent()

    for source in sources:
        content = source.content
        for name in extract_company_names(content):
            if len(data.companies) < MAX_COMPANIES and all(c.name != name for c in data.companies):
                data.companies.append(CompanyItem(name=name, source_url=source.url))

        for sentence in _SENTENCE.split(content):
            sentence = sentence.strip()
            if not sentence:
                continue

            date = _DATE.search(sentence)
            if date and len(data.key_dates) < MAX_DATES:
                data.key_dates.append(DateItem(date=date.group(1), event=sentence[:120]))

            number = _NUMBER.search(sentence)
            if number and len(data.numeric_data) < MAX_NUMBERS:
                data.numeric_data.append(
                    NumericItem(
                        metric=sentence[: number.start()].strip()[-60:] or "value",
                        value=number.group(1),
                        unit=number.group(2),
                        context=source.domain,
                    )
                )

            overlap = sum(1 for w in query_terms if w in sentence.lower())
            if query_terms and overlap and len(data.key_facts) < MAX_FACTS:
                confidence = "medium" if overlap >= 2 and (number or date) else "low"
                data.key_facts.append(
                    FactItem(fact=sentence[:MAX_FACT_LENGTH], confidence=confidence, source=source.url)
                )

    return data


def parse_number(raw: str, unit: Optional[str] = None) -> Optional[float]:
    """``"$383.5"`` with unit ``"billion"`` -> 383.5e9. None when nothing numeric remains."""
    digits = re.sub(r"[^\d.]", "", raw)
    try:
        value = float(digits)
    except ValueError:
        return None
    return value * UNIT_MULTIPLIERS.get((unit or "").lower(), 1.0)


def _field_name(sentence: str, number: re.Match) -> Optional[str]:
    best: Optional[tuple[int, str]] = None
    for name, pattern in FIELD_KEYWORDS:
        for keyword in pattern.finditer(sentence):
            if keyword.end() <= number.start():
                distance = number.start() - keyword.end()
            else:
                distance = max(0, keyword.start() - number.end())
            if distance <= MAX_KEYWORD_DISTANCE and (best is None or distance < best[0]):
                best = (distance, name)
    if best is None:
        return None
    name = best[1]
    return f"{name}_percent" if number.group(2).lower() in PERCENT_UNITS else name


def extract_fields(content: str) -> dict[str, Any]:
    """
    Comparable fields for one source: known figures, its first company and first date.

    Figures are normalized to base units so that sources can be cross-referenced;
    the matched wording is kept under ``_<field>_text``. The first mention of a
    field in the text wins.
    """
    fields: dict[str, Any] = {}
    for sentence in _SENTENCE.split(content):
        for number in _NUMBER.finditer(sentence):
            name = _field_name(sentence, number)
            if name is None or name in fields:
                continue
            value = parse_number(number.group(1), number.group(2))
            if value is not None:
                fields[name] = value
                fields[f"_{name}_text"] = number.group(0).strip()

    companies = extract_company_names(content)
    if companies:
        fields["company"] = companies[0]
    date = _DATE.search(content)
    if date:
        fields["reported_date"] = date.group(1)
    return fields


def with_fields(sources: Iterable[SourceRecord]) -> list[SourceRecord]:
    """Copies of ``sources`` with extracted fields filled in; existing fields are kept."""
    return [
        source.model_copy(update={"fields": {**extract_fields(source.content), **source.fields}})
        for source in sources
    ]


async def extract_structured(
    query: str,
    sources: list[SourceRecord],
    inference: Optional[InferenceService] = None,
) -> ExtractedContent:
    """
    Extract structured items from ``sources``.

    Args:
        query: Sub-query the sources were found for
        sources: Sources with content
        inference: Optional inference service

    Returns:
        ExtractedContent, empty when there is too little content
    """
    combined = combine_content(sources)
    if len(combined) <= MIN_CONTENT_LENGTH:
        return ExtractedContent()

    if inference is not None:
        result = await inference.complete(
            EXTRACTION_PROMPT.format(query=query), combined[:MAX_COMBINED_CONTENT]
        )
        if result.success:
            payload = parse_json_payload(result.result)
            if isinstance(payload, dict):
                try:
                    return ExtractedContent.model_validate(payload)
                except ValidationError as e:
                    logger.bind(component="Extraction").debug(f"Discarding malformed extraction: {e}")

    return heuristic_extract(query, sources)
