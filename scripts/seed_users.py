#!/usr/bin/env python3
"""Seed the database with one user per lifecycle role.

Usage:
    python -m scripts.seed_users
    # or from project root:
    python scripts/seed_users.py
"""

import asyncio
import sys
from pathlib import Path

# Ensure project root is on path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from aft_engine.common.config import get_settings
from aft_engine.common.database import DatabaseManager
from aft_engine.users.service import UserService
from aft_engine.workflow.states import Role

USER_SEEDS = [
    {"email": "admin@aft.local", "first_name": "Ada", "last_name": "Admin", "role": Role.ADMIN},
    {"email": "requestor@aft.local", "first_name": "Rhea", "last_name": "Quest", "role": Role.REQUESTOR},
    {"email": "dao@aft.local", "first_name": "Dana", "last_name": "Official", "role": Role.DAO},
    {"email": "approver@aft.local", "first_name": "Avery", "last_name": "Prover", "role": Role.APPROVER},
    {"email": "cpso@aft.local", "first_name": "Casey", "last_name": "Security", "role": Role.CPSO},
    {"email": "dta@aft.local", "first_name": "Drew", "last_name": "Agent", "role": Role.DTA},
    {"email": "dta2@aft.local", "first_name": "Taylor", "last_name": "Agent", "role": Role.DTA},
    {"email": "sme@aft.local", "first_name": "Sam", "last_name": "Expert", "role": Role.SME},
    {"email": "custodian@aft.local", "first_name": "Morgan", "last_name": "Keeper", "role": Role.MEDIA_CUSTODIAN},
]


async def seed_users() -> None:
    settings = get_settings()
    db = DatabaseManager(settings)
    await db.init()
    await db.create_all()

    svc = UserService()

    async with db.get_session() as session:
        for seed in USER_SEEDS:
            existing = await svc.get_by_email(session, seed["email"])
            if existing:
                print(f"  [skip] {seed['email']} already exists")
                continue

            user = await svc.create_user(
                session,
                email=seed["email"],
                first_name=seed["first_name"],
                last_name=seed["last_name"],
                primary_role=seed["role"].value,
                organization="AFT",
            )
            print(f"  [created] {user.email} ({user.primary_role}) {user.id}")

    await db.close()
    print(f"\nDone. {len(USER_SEEDS)} users seeded.")


if __name__ == "__main__":
    asyncio.run(seed_users())
