"""Thresholds for the decision engine's built-in rules and progress evaluation."""

MAX_TOTAL_ERRORS = 5
RECENT_ERROR_WINDOW_SECONDS = 30
RECENT_ERROR_LIMIT = 3

LOW_COMPILE_QUALITY = 0.5
LOW_CLAIM_VERIFICATION = 0.4
NO_RESULTS_PATIENCE_SECONDS = 15
HIGH_COMPILE_QUALITY = 0.8
SCRAPING_CONTINUE_BELOW_PROGRESS = 40

# Rules at or below this priority are never offered as alternatives
ALTERNATIVE_MIN_PRIORITY = 10
MAX_ALTERNATIVES = 3

# Confidence shaping
QUALITY_CONFIDENCE_WEIGHT = 0.3
ERROR_PENALTY_PER_ERROR = 0.1
MAX_ERROR_PENALTY = 0.3
MIN_DECISION_CONFIDENCE = 0.1

# Progress evaluation
EXPECTED_PROGRESS_PER_MINUTE = 20
LAGGING_FRACTION = 0.5
MIDPOINT_PROGRESS = 50
MIDPOINT_MIN_QUALITY = 0.4
MAX_ERROR_RATE = 0.5
