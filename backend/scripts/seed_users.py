#!/usr/bin/env python3
"""Seed a development database with demo users, a team and lookup rows.

Prints a bearer token per user so the API can be exercised without the
identity service.
"""
import logging

from gearguard.core.auth import create_access_token
from gearguard.core.logging import setup_logging
from gearguard.core.roles import Role
from gearguard.db.session import Base, SessionLocal, engine
from gearguard.models.models import (
    Category,
    Equipment,
    Team,
    TeamMember,
    User,
    WorkCenter,
)

LOG = logging.getLogger("seed_users")

DEMO_USERS = [
    {"username": "employee1", "email": "employee1@example.com", "role": Role.EMPLOYEE.value},
    {"username": "tech1", "email": "tech1@example.com", "role": Role.TECHNICIAN.value},
    {"username": "tech2", "email": "tech2@example.com", "role": Role.TECHNICIAN.value},
    {"username": "admin", "email": "admin@example.com", "role": Role.ADMIN.value},
]


def _get_or_create(db, model, defaults=None, **lookup):
    row = db.query(model).filter_by(**lookup).first()
    if row is None:
        row = model(**lookup, **(defaults or {}))
        db.add(row)
        db.flush()
    return row


def seed_users():
    """Seed demo rows; safe to run more than once."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        users = {
            data["username"]: _get_or_create(
                db, User, defaults={"email": data["email"], "role": data["role"]},
                username=data["username"],
            )
            for data in DEMO_USERS
        }
        team = _get_or_create(
            db, Team, defaults={"description": "Mechanical maintenance"}, name="Mechanics"
        )
        for username in ("tech1", "tech2"):
            _get_or_create(db, TeamMember, team_id=team.id, user_id=users[username].id)
        _get_or_create(db, Category, name="Machinery")
        _get_or_create(db, Equipment, defaults={"location": "Hall A"}, name="CNC Lathe", serial_number="CNC-001")
        _get_or_create(db, WorkCenter, name="Assembly Line 1", code="WC-ASM-1")
        db.commit()

        for username, user in users.items():
            token = create_access_token({"sub": username})
            LOG.info("seeded %s (%s)", username, user.role)
            print(f"{username}\t{user.role}\t{token}")
    except Exception:
        db.rollback()
        LOG.exception("seeding failed")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging("INFO")
    seed_users()
