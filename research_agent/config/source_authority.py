"""Source authority configuration for domain classification.

Source hierarchy (from most to least authoritative):
1. Government domains: 1.0
2. Regulators (SEC, FCA, ESMA, CMA): 0.95
3. Official company/investor-relations pages: 0.90
4. Academic publishers and .edu: 0.85
5. Financial data providers and exchanges: 0.80
6. Major news organizations: 0.75
7. Minor news: 0.60
8. Reference wikis: 0.55
9. Social media and blogging platforms: 0.40
10. Unknown: 0.30

Domain patterns are evaluated in order; the first match wins. Each pattern
matches a registered domain or its subdomains, never a substring.
"""

import re
from typing import Dict, List, Tuple

# Category -> base authority
CATEGORY_AUTHORITY: Dict[str, float] = {
    "government": 1.0,
    "regulatory": 0.95,
    "official": 0.90,
    "academic": 0.85,
    "financial": 0.80,
    "news_major": 0.75,
    "news_minor": 0.60,
    "wiki": 0.55,
    "social": 0.40,
    "unknown": 0.30,
}

# How often a category's content is factually accurate
CATEGORY_RELIABILITY: Dict[str, float] = {
    "government": 0.95,
    "regulatory": 0.95,
    "official": 0.90,
    "academic": 0.90,
    "financial": 0.85,
    "news_major": 0.80,
    "news_minor": 0.65,
    "wiki": 0.70,
    "social": 0.40,
    "unknown": 0.50,
}

# How current a category's content typically is
CATEGORY_FRESHNESS: Dict[str, float] = {
    "news_major": 0.95,
    "news_minor": 0.90,
    "financial": 0.90,
    "social": 0.85,
    "official": 0.75,
    "regulatory": 0.70,
    "government": 0.65,
    "academic": 0.50,
    "wiki": 0.60,
    "unknown": 0.50,
}


def _hosts(*names: str) -> str:
    """Pattern matching any of ``names`` or their subdomains, anchored at the end."""
    return r"(^|\.)(" + "|".join(re.escape(name) for name in names) + r")$"


# (regex pattern, category, authority), first match wins
DOMAIN_PATTERNS: List[Tuple[str, str, float]] = [
    # Government
    (r"\.gov$", "government", 1.0),
    (r"(^|\.)gov\.[a-z]{2}$", "government", 1.0),
    # Regulators
    (_hosts("sec.gov", "fca.org.uk", "esma.europa.eu", "cma.org.sa"), "regulatory", 0.98),
    (_hosts("europa.eu", "worldbank.org", "imf.org"), "government", 0.95),
    # Investor relations subdomains
    (r"^(ir|investors?|investor-relations)\.[a-z0-9-]+\.[a-z.]+$", "official", 0.92),
    # Academic
    (r"\.edu$", "academic", 0.88),
    (r"(^|\.)edu\.[a-z]{2}$", "academic", 0.88),
    (_hosts("arxiv.org", "nature.com", "science.org", "springer.com"), "academic", 0.90),
    (_hosts("researchgate.net", "sciencedirect.com", "jstor.org"), "academic", 0.85),
    # Financial data
    (_hosts("bloomberg.com", "reuters.com", "ft.com", "wsj.com"), "financial", 0.88),
    (_hosts("finance.yahoo.com", "morningstar.com", "marketwatch.com"), "financial", 0.82),
    (_hosts("nasdaq.com", "nyse.com", "londonstockexchange.com", "lse.co.uk"), "financial", 0.90),
    (_hosts("saudiexchange.sa", "tadawul.com.sa", "argaam.com"), "financial", 0.88),
    # Major news
    (_hosts("nytimes.com", "washingtonpost.com", "bbc.com", "bbc.co.uk", "cnn.com"), "news_major", 0.78),
    (_hosts("theguardian.com", "apnews.com", "npr.org", "economist.com"), "news_major", 0.78),
    (_hosts("forbes.com", "fortune.com", "businessinsider.com"), "news_major", 0.75),
    (_hosts("techcrunch.com", "wired.com", "arstechnica.com"), "news_major", 0.72),
    # Reference
    (_hosts("wikipedia.org", "britannica.com", "investopedia.com"), "wiki", 0.55),
    # Social
    (_hosts("reddit.com", "twitter.com", "x.com", "facebook.com", "linkedin.com"), "social", 0.35),
    (_hosts("medium.com", "substack.com", "quora.com"), "social", 0.40),
]

DEFAULT_CATEGORY = "unknown"
DEFAULT_AUTHORITY = CATEGORY_AUTHORITY[DEFAULT_CATEGORY]

# Per-deployment overrides are treated as official sources
CUSTOM_CATEGORY = "official"
CUSTOM_RELIABILITY = 0.9
CUSTOM_FRESHNESS = 0.8

# Authority distribution buckets used in coverage reports
HIGH_AUTHORITY_THRESHOLD = 0.8
MEDIUM_AUTHORITY_THRESHOLD = 0.5
