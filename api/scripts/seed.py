import argparse
import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from app.database import SessionLocal
from app.services.seeding import seed_sample_profiles


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed sample Spark Match profiles")
    parser.add_argument("--n-users", type=int, default=100)
    parser.add_argument("--reset", action="store_true")
    parser.add_argument("--seed", type=int, default=42)
    args = parser.parse_args()

    with SessionLocal() as db:
        summary = seed_sample_profiles(db=db, n_users=args.n_users, seed=args.seed, reset=args.reset)

    print("Seed completed")
    for k, v in summary.items():
        print(f"- {k}: {v}")


if __name__ == "__main__":
    main()
