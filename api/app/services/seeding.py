import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import delete, insert, select

from app.models import Gender, Interest, MatchRow, NotificationRow, ProfileRow, Pronoun, SearchProfileRow, UserInterest

GENDERS = [(1, "Male"), (2, "Female"), (3, "Non-binary")]
PRONOUNS = [(1, "he/him"), (2, "she/her"), (3, "they/them")]

INTEREST_LABELS = [
    "Hiking", "Photography", "Music", "Travel", "Art", "Fitness", "Reading", "Yoga",
    "Cooking", "Running", "Writing", "Dancing", "Science", "Technology", "Camping",
    "Museums", "Theater", "Cycling", "Beach", "Poetry",
]

# (city, latitude, longitude)
CITIES = [
    ("New York", 40.7128, -74.0060),
    ("Brooklyn", 40.6782, -73.9442),
    ("Los Angeles", 34.0522, -118.2437),
    ("Chicago", 41.8781, -87.6298),
    ("Miami", 25.7617, -80.1918),
    ("Seattle", 47.6062, -122.3321),
]

FIRST_NAMES = ["Alice", "Bob", "Carol", "David", "Emma", "Frank", "Grace", "Henry", "Iris", "Jack", "Kai", "Luna"]
LAST_NAMES = ["Johnson", "Smith", "Davis", "Wilson", "Brown", "Garcia", "Lee", "Patel"]

BIO_FRAGMENTS = [
    "Love hiking and photography",
    "always up for an adventure",
    "coffee addict and bookworm",
    "looking for meaningful connections",
    "passionate about music and travel",
    "creative soul who enjoys painting",
    "driven by goals and a growing career",
    "kind, supportive and a little sarcastic",
]


def _ensure_lookups(db) -> dict[str, int]:
    for table, values in ((Gender, GENDERS), (Pronoun, PRONOUNS)):
        existing = set(db.execute(select(table.id)).scalars())
        missing = [{"id": i, "label": label} for i, label in values if i not in existing]
        if missing:
            db.execute(insert(table.__table__), missing)

    known = {label: iid for iid, label in db.execute(select(Interest.id, Interest.label)).all()}
    next_id = max(known.values(), default=0) + 1
    missing_interests = []
    for label in INTEREST_LABELS:
        if label not in known:
            known[label] = next_id
            missing_interests.append({"id": next_id, "label": label})
            next_id += 1
    if missing_interests:
        db.execute(insert(Interest.__table__), missing_interests)
    return known


def _reset(db) -> None:
    for table in (NotificationRow, MatchRow, SearchProfileRow, UserInterest, ProfileRow):
        db.execute(delete(table.__table__))


def seed_sample_profiles(db, n_users: int = 100, seed: int = 42, reset: bool = False) -> dict[str, Any]:
    rng = random.Random(seed)
    if reset:
        _reset(db)
    interest_ids = _ensure_lookups(db)
    now = datetime.now(timezone.utc)

    profiles: list[dict[str, Any]] = []
    interests: list[dict[str, Any]] = []
    search_profiles: list[dict[str, Any]] = []
    for _ in range(n_users):
        user_id = str(uuid.UUID(int=rng.getrandbits(128), version=4))
        gender_id, _label = rng.choice(GENDERS)
        city, lat, lon = rng.choice(CITIES)
        age = rng.randint(21, 45)
        profiles.append(
            {
                "user_id": user_id,
                "name": f"{rng.choice(FIRST_NAMES)} {rng.choice(LAST_NAMES)}",
                "age": age,
                "city": city,
                "bio": ", ".join(rng.sample(BIO_FRAGMENTS, k=2)) + ".",
                "gender_id": gender_id,
                "pronouns_id": gender_id,
                "latitude": lat + rng.uniform(-0.05, 0.05),
                "longitude": lon + rng.uniform(-0.05, 0.05),
                # Roughly one in ten seeded users has an unfinished profile.
                "is_profile_complete": rng.random() > 0.1,
                "created_at": now - timedelta(days=rng.randint(0, 60)),
                "updated_at": now - timedelta(days=rng.randint(0, 14)),
            }
        )
        for label in rng.sample(INTEREST_LABELS, k=rng.randint(3, 7)):
            interests.append({"user_id": user_id, "interest_id": interest_ids[label]})
        if rng.random() < 0.7:
            search_profiles.append(
                {
                    "user_id": user_id,
                    "min_age": max(18, age - rng.randint(3, 8)),
                    "max_age": age + rng.randint(3, 10),
                    "genders": [label for _, label in rng.sample(GENDERS, k=rng.randint(1, 3))],
                    "max_distance": float(rng.choice([10, 25, 50, 100])),
                    "min_shared_interests": rng.randint(0, 2),
                    "preferred_cities": [],
                    "updated_at": now,
                }
            )

    if profiles:
        db.execute(insert(ProfileRow.__table__), profiles)
    if interests:
        db.execute(insert(UserInterest.__table__), interests)
    if search_profiles:
        db.execute(insert(SearchProfileRow.__table__), search_profiles)
    db.commit()

    return {
        "profiles": len(profiles),
        "complete_profiles": sum(1 for p in profiles if p["is_profile_complete"]),
        "user_interests": len(interests),
        "search_profiles": len(search_profiles),
        "reset": reset,
        "seed": seed,
    }
