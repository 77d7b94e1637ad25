import logging
import os
import random
import time
from dataclasses import dataclass
from pathlib import Path

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .config import ADMIN_TOKEN, CACHE_URL, LOG_LEVEL, MAINTENANCE_ENABLED
from .database import SessionLocal
from .deps import validate_admin_token as _validate_admin_token_impl
from .repo import SqlMatchStore, SqlMetricsStore, SqlNotificationStore, SqlProfileStore
from .routes import include_modular_routers
from .services.cache import ScoreCache, build_cache
from .services.candidates import CandidateFilter
from .services.lifecycle import MatchLifecycleManager
from .services.maintenance import BackgroundMaintainer
from .services.matching import MatchingEngine
from .services.metrics import PerformanceMonitor
from .services.notifications import NotificationDispatcher
from .services.scoring import CompatibilityScorer

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


@dataclass
class Services:
    profiles: SqlProfileStore
    matches: SqlMatchStore
    cache: ScoreCache
    monitor: PerformanceMonitor
    lifecycle: MatchLifecycleManager
    engine: MatchingEngine
    maintainer: BackgroundMaintainer


def build_services(
    session_factory=SessionLocal,
    cache: ScoreCache | None = None,
    rng: random.Random | None = None,
) -> Services:
    profiles = SqlProfileStore(session_factory)
    matches = SqlMatchStore(session_factory)
    cache = cache if cache is not None else build_cache(CACHE_URL)
    monitor = PerformanceMonitor(SqlMetricsStore(session_factory))
    dispatcher = NotificationDispatcher(SqlNotificationStore(session_factory), monitor)
    lifecycle = MatchLifecycleManager(matches, dispatcher)
    engine = MatchingEngine(
        profile_store=profiles,
        cache=cache,
        candidate_filter=CandidateFilter(profiles, matches),
        scorer=CompatibilityScorer(rng=rng),
        lifecycle=lifecycle,
        monitor=monitor,
    )
    maintainer = BackgroundMaintainer(engine, lifecycle, cache, monitor, profiles)
    return Services(profiles, matches, cache, monitor, lifecycle, engine, maintainer)


app = FastAPI(title="Spark Match API")
include_modular_routers(app)

services = build_services()


def run_migrations() -> None:
    env_dir = os.getenv("MIGRATIONS_DIR", "").strip()
    docker_dir = Path("/app/migrations")
    local_dir = Path(__file__).resolve().parents[1] / "migrations"

    if env_dir:
        migrations_dir = Path(env_dir)
    elif docker_dir.exists():
        migrations_dir = docker_dir
    else:
        migrations_dir = local_dir

    if not migrations_dir.exists() or not migrations_dir.is_dir():
        raise FileNotFoundError(
            "Migrations directory not found. Checked: "
            f"MIGRATIONS_DIR={env_dir or '<unset>'}, {docker_dir}, {local_dir}"
        )

    files = sorted([f.name for f in migrations_dir.iterdir() if f.is_file() and f.suffix == ".sql"])
    with SessionLocal() as db:
        for fname in files:
            sql = (migrations_dir / fname).read_text(encoding="utf-8")
            db.execute(text(sql))
        db.commit()


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


@app.on_event("startup")
def on_startup() -> None:
    wait_for_db()
    run_migrations()
    if MAINTENANCE_ENABLED:
        services.maintainer.start()
    else:
        logger.info("[MAINT] background maintenance disabled")


@app.on_event("shutdown")
def on_shutdown() -> None:
    services.maintainer.stop()


def _validate_admin_token(token: str | None) -> None:
    _validate_admin_token_impl(token, ADMIN_TOKEN)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
