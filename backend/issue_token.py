"""Print a bearer token for an existing user to stdout.

Usage:
    python -m backend.issue_token EMAIL [--minutes N]
"""
import argparse
import sys

from backend.auth.jwt_handler import create_access_token
from backend.database import SessionLocal
from backend.models import availability, booking, provider, user  # noqa: F401


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Issue a development access token.")
    parser.add_argument("email")
    parser.add_argument("--minutes", type=int, default=None)
    args = parser.parse_args(argv)

    db = SessionLocal()
    try:
        account = db.query(user.User).filter(user.User.email == args.email.strip().lower()).first()
    finally:
        db.close()

    if account is None:
        print(f"No user with email {args.email}", file=sys.stderr)
        sys.exit(1)

    print(create_access_token(subject=account.email, role=account.role, expires_minutes=args.minutes))


if __name__ == "__main__":
    main()
