"""
Create the club treasurer and print a bearer token for the API.
Usage: python scripts/create_treasurer.py --name "Tara" --usn 1AT21CS001 --email tara@example.com
"""
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

import app.models  # noqa: F401
from app.core.exceptions import ValidationError
from app.core.security import create_access_token
from app.db.base import SessionLocal
from app.models.user import User, UserRoleEnum, YearTier
from app.services.member import create_member


def create_treasurer(name: str, usn: str, email: str, year: str = "3rd", branch: str = None):
    """Create the treasurer user, or reuse an existing one with the same email."""
    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.strip().lower()).first()
        if user and user.role != UserRoleEnum.TREASURER:
            print(f"User {email} exists but is not a treasurer; refusing to change roles.")
            return None
        if user is None:
            user = create_member(
                db, name, usn, email, YearTier(year), branch=branch, role=UserRoleEnum.TREASURER,
            )
            print(f"Treasurer created: {user.name} ({user.usn})")
        else:
            print(f"Treasurer already exists: {user.name} ({user.usn})")

        token = create_access_token({"sub": str(user.id)})
        print(f"\nBearer token:\n{token}")
        return user
    except ValidationError as e:
        print(f"Error creating treasurer: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Create the club treasurer")
    parser.add_argument("--name", required=True, help="Display name")
    parser.add_argument("--usn", required=True, help="University seat number")
    parser.add_argument("--email", required=True, help="Email address")
    parser.add_argument("--year", default="3rd", choices=[tier.value for tier in YearTier], help="Year tier")
    parser.add_argument("--branch", default=None, help="Branch")

    args = parser.parse_args()
    create_treasurer(args.name, args.usn, args.email, args.year, args.branch)
