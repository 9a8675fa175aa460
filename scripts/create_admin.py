"""CLI script to create an ADMIN account in the configured database.
Usage: python scripts/create_admin.py EMAIL PASSWORD [--name NAME]
"""
import sys
import argparse
import pathlib
# Ensure the repository root is on sys.path so `evalify` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from evalify.database import engine, create_db_and_tables
from evalify import services


def main(email: str, password: str, name: str = 'Administrator'):
    """Create the admin unless a user with `email` already exists."""
    create_db_and_tables()
    with Session(engine) as session:
        auth = services.AuthService(session)
        existing = auth.user_repo.get_by_email(email)
        user = auth.ensure_admin(email, password, name=name)
        if existing:
            print(f'User {email} already exists (id={user.id}, role={user.role.value})')
        else:
            print(f'Created admin {email} (id={user.id})')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('email')
    parser.add_argument('password')
    parser.add_argument('--name', default='Administrator')
    args = parser.parse_args()
    if len(args.password) < 6:
        parser.error('password must be at least 6 characters')
    main(args.email, args.password, name=args.name)
