"""Query decomposition into focused sub-queries for wide research."""

import re

MAX_SUB_QUERIES = 12
MIN_ENTITY_LENGTH = 3
MIN_ENTITY_QUERY_LENGTH = 4

_ENTITY = re.compile(r"\b([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)*)\b")
_ENTITY_STOPWORDS = frozenset({"The", "And", "For", "With", "From"})

IPO_PATTERN = re.compile(
    r"\b(ipo|ipos|initial\s+public\s+offering|listing|listings|going\s+public)\b", re.IGNORECASE
)
COMPANY_PATTERN = re.compile(
    r"\b(companies|company|firms?|corporations?|entities|businesses)\b", re.IGNORECASE
)
_SAUDI = re.compile(r"\b(saudi|ksa|tadawul|tasi|nomu|riyadh)\b", re.IGNORECASE)
_SAUDI_CORE = re.compile(r"\b(saudi|ksa|tadawul|tasi|riyadh)\b", re.IGNORECASE)
_GOVERNANCE = re.compile(r"\b(board|directors?|governance|executive)\b", re.IGNORECASE)
_OWNERSHIP = re.compile(r"\b(shareholders?|ownership|investors?|stake)\b", re.IGNORECASE)
_FINANCIALS = re.compile(
    r"\b(financials?|revenue|profit|earnings|valuation|market\s*cap|p/e|ebitda)\b", re.IGNORECASE
)
_STOCK = re.compile(r"\b(stock|shares?|investment|trading|dividend)\b", re.IGNORECASE)

IPO_QUERIES = (
    "upcoming IPO companies list names",
    "IPO pipeline companies names list",
    "companies planning IPO filing names",
    "recent IPO announced company names",
)
SAUDI_IPO_QUERIES = (
    "Saudi Arabia upcoming IPO company names list",
    "TASI new listings companies names",
    "Nomu parallel market IPO companies list",
    "Tadawul upcoming IPO company names list",
    "Saudi CMA approved IPO companies names",
    "site:tadawul.com.sa IPO companies",
    "site:cma.org.sa approved listings companies",
    "site:argaam.com Saudi IPO companies",
)


def extract_entities(query: str) -> list[str]:
    """Capitalized words and phrases in order of appearance, without duplicates."""
    entities: list[str] = []
    for match in _ENTITY.finditer(query):
        name = match.group(1)
        if len(name) > MIN_ENTITY_LENGTH - 1 and name not in _ENTITY_STOPWORDS and name not in entities:
            entities.append(name)
    return entities


def decompose(query: str, limit: int = MAX_SUB_QUERIES) -> list[str]:
    """
    Expand a query into focused sub-queries.

    The original query always comes first, followed by entity-focused
    queries and templates triggered by the query's domain (IPOs, companies,
    governance, ownership, Saudi market, financials, stock).

    Args:
        query: Research query
        limit: Maximum number of sub-queries

    Returns:
        Unique sub-queries in generation order, at most ``limit``
    """
    entities = extract_entities(query)
    sub_queries = [query]

    for entity in entities:
        if len(entity) >= MIN_ENTITY_QUERY_LENGTH:
            sub_queries += [f"{entity} company profile", f"{entity} latest news"]

    if IPO_PATTERN.search(query):
        sub_queries += IPO_QUERIES
        if _SAUDI.search(query):
            sub_queries += SAUDI_IPO_QUERIES
        for entity in entities:
            sub_queries += [f"{entity} IPO date valuation", f"{entity} stock listing announcement"]

    if COMPANY_PATTERN.search(query):
        sub_queries += [f"{query} company names list", f"{query} specific companies"]

    if _GOVERNANCE.search(query):
        for entity in entities:
            sub_queries += [f"{entity} board of directors members", f"{entity} executive leadership team"]

    if _OWNERSHIP.search(query):
        for entity in entities:
            sub_queries += [f"{entity} major shareholders ownership", f"{entity} investor relations"]

    if _SAUDI_CORE.search(query):
        for entity in entities:
            sub_queries += [f"{entity} Saudi Arabia operations", f"{entity} Tadawul stock listing"]

    if _FINANCIALS.search(query):
        sub_queries += [f"{query} financial data numbers", f"{query} revenue profit figures"]
        for entity in entities:
            sub_queries += [
                f"{entity} annual report financial statements",
                f"{entity} revenue profit margin",
                f"{entity} market capitalization valuation",
            ]

    if _STOCK.search(query):
        for entity in entities:
            sub_queries += [
                f"{entity} stock price performance",
                f"{entity} dividend history yield",
                f"{entity} trading volume",
            ]

    return list(dict.fromkeys(sub_queries))[:limit]
