# scripts/create_user.py
"""
Bootstrap a user (e.g. the first admin) directly in the database.

    python scripts/create_user.py --email admin@example.com --password secret --role ADMIN
"""

from __future__ import annotations

import argparse

from tutor_sessions.core.exceptions import ValidationFailed
from tutor_sessions.db.session import SessionLocal, engine
from tutor_sessions.models import Base
from tutor_sessions.models.user import CourseType, UserRole
from tutor_sessions.services.user_service import create_user


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--role", required=True, choices=[r.value for r in UserRole])
    parser.add_argument("--name", default=None)
    parser.add_argument("--phone", default=None)
    parser.add_argument("--course-type", default=None, choices=[c.value for c in CourseType])
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        user = create_user(
            db,
            email=args.email,
            password=args.password,
            role=UserRole(args.role),
            name=args.name,
            phone=args.phone,
            course_type=CourseType(args.course_type) if args.course_type else None,
        )
    except ValidationFailed as e:
        raise SystemExit(f"[create_user] {e}")
    finally:
        db.close()

    print(f"[create_user] created {user.role} {user.email} ({user.id})")


if __name__ == "__main__":
    main()
