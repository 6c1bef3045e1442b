"""
Commit helpers shared by the ledger services.

A service stages every field of one operation on the session and commits
once; a failed commit is rolled back and mapped to a typed error.
"""
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from carbonex.errors import ConcurrencyConflict, StoreUnavailable
from carbonex.logging_config import get_logger


log = get_logger(component="unit_of_work")


async def commit(db: AsyncSession) -> None:
    """
    Commit the session as one atomic unit.

    Raises:
        ConcurrencyConflict: a versioned row changed since it was read, or
            a unique constraint lost a race.
        StoreUnavailable: the database rejected or dropped the commit.
    """
    try:
        await db.commit()
    except StaleDataError as e:
        await db.rollback()
        log.warning("commit_conflict", error=str(e))
        raise ConcurrencyConflict("Record was modified concurrently, retry with fresh data") from e
    except IntegrityError as e:
        await db.rollback()
        log.warning("commit_integrity_conflict", error=str(e.orig))
        raise ConcurrencyConflict("Record already exists or was modified concurrently") from e
    except DBAPIError as e:
        await db.rollback()
        log.error("commit_failed", error=str(e))
        raise StoreUnavailable("Persistence layer failed, nothing was committed") from e
