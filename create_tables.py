"""
Script to create all database tables.

This script creates all tables defined in the models and seeds the bank
operator account. Run this after starting PostgreSQL with Docker.
"""
import asyncio
from carbonex.config import settings
from carbonex.database import AsyncSessionLocal, engine
from carbonex.models.base import Base
from carbonex.models.organisation import Organisation
from carbonex.models.user import User, UserRole
from carbonex.models.trip import Trip
from carbonex.models.credit import CreditTransaction
from carbonex.models.registration import PendingRegistration
from carbonex.services.user_service import UserService


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped!")


async def seed_special_users(session_factory=AsyncSessionLocal) -> User | None:
    """
    Create the bank operator if it does not exist yet.

    Safe to run repeatedly. Skipped until BANK_OPERATOR_ID holds the
    operator's principal id from the identity provider.
    """
    if not settings.BANK_OPERATOR_ID:
        print("Warning: BANK_OPERATOR_ID not set, bank operator not seeded")
        return None

    async with session_factory() as db:
        bank = await UserService(db).ensure_special_user(
            user_id=settings.BANK_OPERATOR_ID,
            email=settings.BANK_OPERATOR_EMAIL,
            name=settings.BANK_OPERATOR_NAME,
            role=UserRole.BANK,
        )
    print(f"Bank operator: {bank.email} (id: {bank.id})")
    return bank


async def main():
    """Main entry point."""
    print("Creating database tables...")
    await create_all_tables()
    await seed_special_users()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
