"""
Create an active account with a role (e.g. first admin). Run from project root:
  python -m app.scripts.create_user EMAIL PASSWORD [role] [--name NAME] [--lastname LASTNAME]
Example:
  python -m app.scripts.create_user admin@clinic.example your-secure-password admin
"""
import argparse
import sys

from app.core.database import SessionLocal
from app.core.errors import DuplicateEmailError
from app.core.security import EMAIL_MAX_LEN, NAME_MAX_LEN, PASSWORD_MAX_LEN, PASSWORD_MIN_LEN
from app.models import AccountStatus
from app.services.stores import SqlAccountStore, SqlRoleStore


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Create a Dentaria account without the registration flow.")
    parser.add_argument("email", help=f"Email (max {EMAIL_MAX_LEN} chars)")
    parser.add_argument("password", help=f"Password ({PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} chars)")
    parser.add_argument("role", nargs="?", default="user", choices=["user", "admin", "specialist"])
    parser.add_argument("--name", default="Admin")
    parser.add_argument("--lastname", default="Dentaria")
    args = parser.parse_args(argv)

    email = args.email.strip().lower()
    if not email or len(email) > EMAIL_MAX_LEN or "@" not in email:
        print("Invalid email.", file=sys.stderr)
        return 1
    if not PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN:
        print(f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.", file=sys.stderr)
        return 1
    if len(args.name) > NAME_MAX_LEN or len(args.lastname) > NAME_MAX_LEN:
        print(f"Names may not be longer than {NAME_MAX_LEN} characters.", file=sys.stderr)
        return 1

    db = SessionLocal()
    try:
        role = SqlRoleStore(db).find_by_name(args.role)
        if role is None:
            print(f"Role '{args.role}' does not exist; run app.scripts.seed_roles first.", file=sys.stderr)
            return 1
        store = SqlAccountStore(db)
        with store.atomic():
            user = store.create(
                {
                    "first_name": args.name,
                    "last_name": args.lastname,
                    "email": email,
                    "password": args.password,
                    "status": AccountStatus.ACTIVE.value,
                }
            )
            store.assign_role(user.id, role.id)
        print(f"Created account '{email}' with role '{args.role}'.")
        return 0
    except DuplicateEmailError:
        print(f"Account '{email}' already exists.", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
