import json
import os
from typing import Any

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MATCH_EXPIRY_HOURS = int(os.getenv("MATCH_EXPIRY_HOURS", "24"))
MIN_MATCH_SCORE = int(os.getenv("MIN_MATCH_SCORE", "20"))
DECISION_MAX_RETRIES = int(os.getenv("DECISION_MAX_RETRIES", "3"))

SCORE_THRESHOLDS: dict[str, int] = {
    "excellent": 80,
    "good": 60,
    "acceptable": 40,
    "minimum": MIN_MATCH_SCORE,
}

# (exclusive upper bound on complete profiles, candidate limit); last tier has no bound.
CANDIDATE_LIMIT_TIERS: list[tuple[int | None, int]] = [
    (1_000, int(os.getenv("CANDIDATE_LIMIT_SMALL", "50"))),
    (10_000, int(os.getenv("CANDIDATE_LIMIT_MEDIUM", "100"))),
    (100_000, int(os.getenv("CANDIDATE_LIMIT_LARGE", "200"))),
    (None, int(os.getenv("CANDIDATE_LIMIT_XLARGE", "500"))),
]

DEFAULT_SEARCH_PREFERENCES: dict[str, Any] = {
    "min_age": 18,
    "max_age": 100,
    "genders": ["Male", "Female", "Non-binary"],
    "max_distance": 50.0,
    "min_shared_interests": 1,
    "preferred_cities": [],
}

CACHE_URL = os.getenv("CACHE_URL", "").strip()
CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "10000"))
CACHE_TTLS: dict[str, int] = {
    "compatibility": int(os.getenv("CACHE_TTL_COMPATIBILITY", "3600")),
    "profile": int(os.getenv("CACHE_TTL_PROFILE", "1800")),
    "preferences": int(os.getenv("CACHE_TTL_PREFERENCES", "3600")),
    "interests": int(os.getenv("CACHE_TTL_INTERESTS", "1800")),
    "metrics": int(os.getenv("CACHE_TTL_METRICS", "300")),
}

MAINTENANCE_ENABLED = os.getenv("MAINTENANCE_ENABLED", "true").lower() == "true"
MAINTENANCE_INTERVALS: dict[str, float] = {
    "precompute": float(os.getenv("PRECOMPUTE_INTERVAL_SECONDS", "300")),
    "cache_sweep": float(os.getenv("CACHE_SWEEP_INTERVAL_SECONDS", "600")),
    "match_sweep": float(os.getenv("MATCH_SWEEP_INTERVAL_SECONDS", "300")),
    "metrics": float(os.getenv("METRICS_INTERVAL_SECONDS", "60")),
}
PRECOMPUTE_BATCH_SIZE = int(os.getenv("PRECOMPUTE_BATCH_SIZE", "100"))
PRECOMPUTE_ACTIVE_DAYS = int(os.getenv("PRECOMPUTE_ACTIVE_DAYS", "7"))
PRECOMPUTE_BUDGET_SECONDS = float(os.getenv("PRECOMPUTE_BUDGET_SECONDS", "30"))

METRICS_MEMORY_BUDGET_MB = float(os.getenv("METRICS_MEMORY_BUDGET_MB", "512"))
ALERT_THRESHOLDS: dict[str, float] = {
    "max_query_time_ms": float(os.getenv("ALERT_MAX_QUERY_TIME_MS", "1000")),
    "min_cache_hit_rate": float(os.getenv("ALERT_MIN_CACHE_HIT_RATE", "0.7")),
    "max_error_rate": float(os.getenv("ALERT_MAX_ERROR_RATE", "0.05")),
    "max_memory_usage": float(os.getenv("ALERT_MAX_MEMORY_USAGE", "0.8")),
    "min_user_engagement": float(os.getenv("ALERT_MIN_USER_ENGAGEMENT", "0.1")),
    "min_match_success_rate": float(os.getenv("ALERT_MIN_MATCH_SUCCESS_RATE", "0.3")),
}

if os.getenv("ALERT_THRESHOLDS_JSON"):
    try:
        ALERT_THRESHOLDS.update(json.loads(os.getenv("ALERT_THRESHOLDS_JSON", "{}")))
    except json.JSONDecodeError:
        pass

RL_MATCH_FIND_LIMIT = int(os.getenv("RL_MATCH_FIND_LIMIT", "30"))
RL_MATCH_DECISION_LIMIT = int(os.getenv("RL_MATCH_DECISION_LIMIT", "100"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))
