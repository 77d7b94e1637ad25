from __future__ import annotations

import math
import random
import re
from datetime import datetime, timezone
from typing import Any, Callable

from ..config import SCORE_THRESHOLDS
from ..entities import CompatibilityResult, Profile

CATEGORY_CAPS: dict[str, float] = {
    "interests": 40,
    "age": 25,
    "gender": 20,
    "location": 15,
    "bio": 10,
    "lifestyle": 10,
    "personality": 8,
    "activity": 7,
    "chemistry": 5,
}
MAX_POSSIBLE_SCORE = sum(CATEGORY_CAPS.values())

POINTS_PER_SHARED_INTEREST = 10
POINTS_PER_SHARED_BIO_WORD = 2
POINTS_PER_LIFESTYLE_CATEGORY = 2.5
POINTS_PER_PERSONALITY_TRAIT = 1.5

# (max |age difference|, points, detail); anything beyond the last band gets AGE_FLOOR.
AGE_BANDS: list[tuple[int, int, str]] = [
    (0, 25, "Same age - perfect match!"),
    (1, 23, "Very similar age"),
    (3, 20, "Similar age range"),
    (5, 15, "Age compatible"),
    (8, 10, "Age difference acceptable"),
    (12, 5, "Significant age difference"),
]
AGE_FLOOR: tuple[int, str] = (2, "Large age gap")

# (max distance in miles, points, detail); anything farther gets DISTANCE_FLOOR.
DISTANCE_BANDS: list[tuple[float, int, str]] = [
    (10, 12, "Very close - within 10 miles"),
    (25, 10, "Close - within 25 miles"),
    (50, 7, "Reasonable distance - within 50 miles"),
]
DISTANCE_FLOOR: tuple[int, str] = (3, "Long distance")
EARTH_RADIUS_MILES = 3959.0

GENDER_ALIASES = {
    "male": "male",
    "man": "male",
    "female": "female",
    "woman": "female",
    "non-binary": "non-binary",
    "nonbinary": "non-binary",
    "non binary": "non-binary",
}
COMPATIBLE_GENDER_PAIRS = {
    frozenset({"male", "female"}),
    frozenset({"non-binary"}),
    frozenset({"non-binary", "male"}),
    frozenset({"non-binary", "female"}),
}

LIFESTYLE_CATEGORIES: dict[str, frozenset[str]] = {
    "active": frozenset({"sports", "fitness", "hiking", "running", "swimming", "cycling", "yoga", "gym"}),
    "creative": frozenset({"art", "music", "writing", "photography", "design", "crafting", "painting"}),
    "social": frozenset({"travel", "parties", "socializing", "networking", "events", "dancing"}),
    "intellectual": frozenset({"reading", "learning", "science", "technology", "philosophy", "education"}),
    "outdoor": frozenset({"nature", "camping", "hiking", "beach", "mountain", "adventure"}),
    "cultural": frozenset({"museums", "theater", "art", "history", "literature", "poetry"}),
}
ACTIVE_INTERESTS = LIFESTYLE_CATEGORIES["active"]

PERSONALITY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "adventurous": ("adventure", "explore", "travel", "new", "exciting", "spontaneous", "bold"),
    "caring": ("care", "help", "support", "kind", "compassionate", "nurturing", "empathetic"),
    "funny": ("funny", "humor", "joke", "laugh", "comedy", "wit", "sarcastic"),
    "ambitious": ("goal", "success", "career", "achieve", "motivated", "driven", "focused"),
    "romantic": ("romance", "love", "relationship", "intimate", "passionate", "affectionate"),
    "creative": ("creative", "artistic", "imaginative", "innovative", "original", "unique"),
}

BIO_STOP_WORDS = frozenset(
    {
        "that", "this", "with", "from", "they", "have", "been", "were", "said", "each",
        "which", "their", "time", "will", "about", "would", "there", "could", "other",
    }
)
_WORD_SPLIT = re.compile(r"\W+")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _fold(labels: frozenset[str] | set[str]) -> dict[str, str]:
    return {str(label).strip().casefold(): str(label).strip() for label in labels if str(label or "").strip()}


def normalize_gender(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    if not v:
        return None
    return GENDER_ALIASES.get(v, v)


def is_gender_compatible(gender_a: Any, gender_b: Any) -> bool:
    a = normalize_gender(gender_a)
    b = normalize_gender(gender_b)
    if not a or not b:
        return False
    return frozenset({a, b}) in COMPATIBLE_GENDER_PAIRS


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = math.sin(d_lat / 2) ** 2 + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def shared_interests(a: Profile, b: Profile) -> list[str]:
    folded_a = _fold(a.interests)
    folded_b = _fold(b.interests)
    common = sorted(set(folded_a) & set(folded_b))
    return [folded_a[key] for key in common]


def extract_bio_keywords(bio: str | None) -> set[str]:
    if not bio:
        return set()
    words = _WORD_SPLIT.split(bio.lower())
    return {w for w in words if len(w) > 3 and w not in BIO_STOP_WORDS}


def age_points(age_a: int | None, age_b: int | None) -> tuple[int, str]:
    if age_a is None or age_b is None:
        return 0, "Age information incomplete"
    diff = abs(int(age_a) - int(age_b))
    for max_diff, points, detail in AGE_BANDS:
        if diff <= max_diff:
            return points, detail
    return AGE_FLOOR


def _score_interests(a: Profile, b: Profile) -> tuple[float, list[str], str | None]:
    if not a.interests or not b.interests:
        return 0, ["Interest information incomplete"], None
    common = shared_interests(a, b)
    if not common:
        return 0, ["No shared interests found"], None
    points = min(len(common) * POINTS_PER_SHARED_INTEREST, CATEGORY_CAPS["interests"])
    joined = ", ".join(common)
    return points, [f"You both love: {joined}"], f"Shared {len(common)} interests: {joined}"


def _score_location(a: Profile, b: Profile) -> tuple[float, str]:
    city_a = (a.city or "").strip().lower()
    city_b = (b.city or "").strip().lower()
    if city_a and city_a == city_b:
        return 15, "Same city - easy to meet up!"
    if a.has_coordinates and b.has_coordinates:
        distance = haversine_miles(a.latitude, a.longitude, b.latitude, b.longitude)
        for max_miles, points, detail in DISTANCE_BANDS:
            if distance <= max_miles:
                return points, detail
        return DISTANCE_FLOOR
    if city_a and city_b:
        if city_b.split(" ")[0] in city_a or city_a.split(" ")[0] in city_b:
            return 8, "Nearby cities"
        return 3, "Different cities"
    return 0, "Location information incomplete"


def _score_bio(a: Profile, b: Profile) -> tuple[float, str]:
    if not a.bio or not b.bio:
        return 0, "Bio information incomplete"
    common = extract_bio_keywords(a.bio) & extract_bio_keywords(b.bio)
    if not common:
        return 0, "Different bio styles"
    return min(len(common) * POINTS_PER_SHARED_BIO_WORD, CATEGORY_CAPS["bio"]), "Similar language and interests in bio"


def _lifestyle_categories(interests: frozenset[str]) -> set[str]:
    folded = set(_fold(interests))
    return {name for name, labels in LIFESTYLE_CATEGORIES.items() if folded & labels}


def _personality_traits(bio: str | None) -> set[str]:
    text = (bio or "").lower()
    if not text:
        return set()
    return {trait for trait, words in PERSONALITY_KEYWORDS.items() if any(w in text for w in words)}


def _score_activity(a: Profile, b: Profile) -> tuple[float, str]:
    a_active = bool(set(_fold(a.interests)) & ACTIVE_INTERESTS)
    b_active = bool(set(_fold(b.interests)) & ACTIVE_INTERESTS)
    if a_active and b_active:
        return 7, "Both are very active"
    if a_active or b_active:
        return 3, "Different activity levels"
    return 5, "Both prefer relaxed activities"


def compute_compatibility(
    a: Profile,
    b: Profile,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> CompatibilityResult:
    """Score a pair of profiles on the 140-point budget and scale it to 0-100.

    Every category except chemistry is symmetric in (a, b). Chemistry is drawn
    from ``rng`` as an integer in [0, 5]; without an rng it contributes 0, which
    keeps the result a pure function of the two profiles.
    """
    breakdown: dict[str, float] = {}
    insights: dict[str, list[str]] = {}
    reasons: list[str] = []

    interest_points, interest_details, interest_reason = _score_interests(a, b)
    breakdown["interests"] = interest_points
    insights["interests"] = interest_details
    if interest_reason:
        reasons.append(interest_reason)

    age_score, age_detail = age_points(a.age, b.age)
    breakdown["age"] = age_score
    insights["age"] = [age_detail]
    if age_score > 0:
        reasons.append(age_detail)

    if is_gender_compatible(a.gender, b.gender):
        breakdown["gender"] = CATEGORY_CAPS["gender"]
        insights["gender"] = ["Gender preferences align perfectly"]
        reasons.append("Gender compatible")
    else:
        breakdown["gender"] = 0
        insights["gender"] = ["Gender preferences may not align"]

    location_points, location_detail = _score_location(a, b)
    breakdown["location"] = location_points
    insights["location"] = [location_detail]
    if location_points > 0:
        reasons.append(location_detail)

    bio_points, bio_detail = _score_bio(a, b)
    breakdown["bio"] = bio_points
    insights["bio"] = [bio_detail]
    if bio_points > 0:
        reasons.append("Similar interests in bio")

    categories = sorted(_lifestyle_categories(a.interests) & _lifestyle_categories(b.interests))
    breakdown["lifestyle"] = min(len(categories) * POINTS_PER_LIFESTYLE_CATEGORY, CATEGORY_CAPS["lifestyle"])
    insights["lifestyle"] = [f"Both enjoy {c} activities" for c in categories]
    if breakdown["lifestyle"] > 0:
        reasons.append("Compatible lifestyle")

    traits = sorted(_personality_traits(a.bio) & _personality_traits(b.bio))
    breakdown["personality"] = min(len(traits) * POINTS_PER_PERSONALITY_TRAIT, CATEGORY_CAPS["personality"])
    insights["personality"] = [f"Both seem {t}" for t in traits]
    if breakdown["personality"] > 0:
        reasons.append("Compatible personalities")

    activity_points, activity_detail = _score_activity(a, b)
    breakdown["activity"] = activity_points
    insights["activity"] = [activity_detail]
    reasons.append("Compatible activity levels")

    chemistry = rng.randint(0, int(CATEGORY_CAPS["chemistry"])) if rng is not None else 0
    breakdown["chemistry"] = chemistry
    if chemistry > 0:
        reasons.append("Great chemistry potential")

    raw = sum(breakdown.values())
    score = max(0, min(100, _round_half_up(100 * raw / MAX_POSSIBLE_SCORE)))
    return CompatibilityResult(
        score=score,
        reasons=tuple(reasons),
        breakdown=breakdown,
        insights=insights,
        computed_at=now or _now_utc(),
    )


def score_tier(score: int) -> str | None:
    for tier in ("excellent", "good", "acceptable", "minimum"):
        if score >= SCORE_THRESHOLDS[tier]:
            return tier
    return None


class CompatibilityScorer:
    def __init__(self, rng: random.Random | None = None, clock: Callable[[], datetime] = _now_utc) -> None:
        self._rng = rng if rng is not None else random.Random()
        self._clock = clock

    def score(self, a: Profile, b: Profile) -> CompatibilityResult:
        return compute_compatibility(a, b, rng=self._rng, now=self._clock())
