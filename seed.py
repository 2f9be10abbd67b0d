"""
Seed script -- populates the database with the starting fleet.

Run after migrations:
    python seed.py

Creates:
  - the configured system accounts (admin, project manager)
  - 4 drivers
  - 4 vehicles
  - 2 sample requesters
"""

import asyncio

from sqlalchemy import text

from src.config import settings
from src.domain.enums import UserRole, VehicleType
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import UserModel, VehicleModel
from src.services.bootstrap import ensure_system_accounts
from src.services.fleet import hash_password

DRIVERS = [
    {"name": "Driver 1", "email": "driver1@fleet.local", "phone": "0771111111"},
    {"name": "Driver 2", "email": "driver2@fleet.local", "phone": "0772222222"},
    {"name": "Driver 3", "email": "driver3@fleet.local", "phone": "0773333333"},
    {"name": "Driver 4", "email": "driver4@fleet.local", "phone": "0774444444"},
]

REQUESTERS = [
    {"name": "Nimal Perera", "email": "nimal@fleet.local", "phone": "0711234567"},
    {"name": "Ayesha Fernando", "email": "ayesha@fleet.local", "phone": "0717654321"},
]

VEHICLES = [
    {"vehicle_number": "NB-1985", "type": VehicleType.CAR},
    {"vehicle_number": "PA-4473", "type": VehicleType.CAR},
    {"vehicle_number": "NC-3888", "type": VehicleType.CAR},
    {"vehicle_number": "KH-5330", "type": VehicleType.CAR},
]

DEFAULT_PASSWORD = "Welcome#2026"


async def seed():
    async with async_session_factory() as session:
        await ensure_system_accounts(session, settings.system_accounts)
        print(f"  Ensured {len(settings.system_accounts)} system accounts")

        # Check if the fleet is already seeded
        result = await session.execute(text("SELECT count(*) FROM vehicles"))
        if result.scalar() > 0:
            await session.commit()
            print("Fleet already seeded. Skipping.")
            return

        # ── Users ─────────────────────────────────────────────────────
        password_hash = hash_password(DEFAULT_PASSWORD, settings.bcrypt_rounds)
        users = [
            UserModel(role=UserRole.DRIVER, password_hash=password_hash, **d)
            for d in DRIVERS
        ] + [
            UserModel(role=UserRole.USER, password_hash=password_hash, **r)
            for r in REQUESTERS
        ]
        session.add_all(users)
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers and {len(REQUESTERS)} requesters")

        # ── Vehicles ──────────────────────────────────────────────────
        session.add_all([VehicleModel(**v) for v in VEHICLES])
        await session.flush()
        print(f"  Created {len(VEHICLES)} vehicles")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
