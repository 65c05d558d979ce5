#!/usr/bin/env python3
"""
Create (or reset) an operator account with a proper bcrypt hash
"""
import argparse
import os
import sys

from dotenv import load_dotenv
from sqlalchemy import func

from nightaudit import models
from nightaudit.auth import create_access_token, get_password_hash
from nightaudit.database import Base, SessionLocal, engine

load_dotenv()

DEFAULT_EMAIL = "admin@nightaudit.local"
DEFAULT_NAME = "Admin"


def main(argv: list[str]) -> int:
    p = argparse.ArgumentParser()
    p.add_argument("--email", default=DEFAULT_EMAIL)
    p.add_argument("--name", default=DEFAULT_NAME)
    p.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"), help="Defaults to $ADMIN_PASSWORD.")
    p.add_argument("--role", default=models.UserRole.admin.value, help="admin | general_manager | club_staff | <club role code>")
    p.add_argument("--club-id", default=os.getenv("CLUB_ID"), help="Club the account belongs to.")
    p.add_argument("--print-token", action="store_true", help="Also print a bearer token for local testing.")
    args = p.parse_args(argv)

    email = str(args.email or "").strip().lower()
    if not email or "@" not in email:
        print("ERROR: --email is invalid.", file=sys.stderr)
        return 2
    if not args.password:
        print("ERROR: pass --password or set ADMIN_PASSWORD.", file=sys.stderr)
        return 2

    print("=" * 60)
    print("Creating Operator Account")
    print("=" * 60)
    print(f"Email: {email}")
    print(f"Name: {args.name}")
    print(f"Role: {args.role}")
    print()

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as db:
        user = db.query(models.User).filter(func.lower(models.User.email) == email).first()
        if user is None:
            user = models.User(name=args.name, email=email, password="")
            db.add(user)
        user.name = args.name
        user.password = get_password_hash(args.password)
        user.role = args.role
        user.club_id = args.club_id or None
        db.commit()
        print(f"OK: account ready (id={user.id}).")

    if args.print_token:
        print()
        print(f"Bearer token: {create_access_token({'sub': email})}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
