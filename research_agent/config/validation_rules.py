"""Cross-reference validation configuration.

Numeric tolerances are expressed as the maximum allowed spread between
sources, in percent of the mean value.
"""

from typing import Dict

NUMERIC_TOLERANCES: Dict[str, float] = {
    "price": 2.0,
    "market_cap": 5.0,
    "shares": 2.0,
    "volume": 10.0,
    "percentage": 0.5,
    "revenue": 5.0,
    "profit": 5.0,
    "default": 5.0,
}

DEFAULT_FUZZY_THRESHOLD = 0.85

# Confidence values on the 0-100 scale
EXACT_MATCH_CONFIDENCE = 100.0
FUZZY_TEXT_CONFIDENCE = 95.0
NUMERIC_MATCH_CONFIDENCE = 90.0
NUMERIC_CONFLICT_CONFIDENCE = 70.0
SINGLE_SOURCE_CONFIDENCE_CAP = 80.0
AUTHORITY_FALLBACK_CONFIDENCE_CAP = 75.0

# A lone source is trusted only above this authority
SINGLE_SOURCE_TRUST_THRESHOLD = 0.7
