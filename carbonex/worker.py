"""
ARQ background worker for CarbonEx.

Runs scheduled reconciliation and settles claimed listings queued by the
API. Start with: arq carbonex.worker.WorkerSettings
"""
import asyncio

from arq import Retry, cron
from arq.connections import RedisSettings

from carbonex.config import settings
from carbonex.database import AsyncSessionLocal
from carbonex.errors import ConcurrencyConflict, LedgerError
from carbonex.logging_config import get_logger
from carbonex.sentry_config import capture_exception
from carbonex.services.marketplace_service import MarketplaceService
from carbonex.services.reconciliation_service import ReconciliationService


log = get_logger(component="worker")

MAX_TRIES = 3
RETRY_DEFER_SECONDS = 5


async def settle_transaction(ctx: dict, tx_id: str) -> dict:
    """Settle a claimed listing; safe to retry since settlement is idempotent."""
    job_try = ctx.get("job_try", 1)
    max_tries = ctx.get("max_tries", MAX_TRIES)

    async with AsyncSessionLocal() as db:
        try:
            tx = await MarketplaceService(db).settle(tx_id)
        except ConcurrencyConflict:
            if job_try >= max_tries:
                log.error("settlement_retries_exhausted", transaction_id=tx_id, job_try=job_try)
                raise
            log.warning("settlement_retry", transaction_id=tx_id, job_try=job_try, max_tries=max_tries)
            raise Retry(defer=RETRY_DEFER_SECONDS)
        except LedgerError as e:
            # insufficient funds or a stale claim: the listing state already reflects it
            log.info("settlement_not_applied", transaction_id=tx_id, error=e.code)
            return {"status": "failed", **e.to_dict()}
        except Exception:
            log.exception("settlement_job_failed", transaction_id=tx_id, job_try=job_try)
            capture_exception()
            raise

    return {"status": tx.status.value, "transaction_id": tx.id}


async def reconcile_organisation(ctx: dict, org_id: str) -> dict:
    """Reconcile one organisation on demand."""
    async with AsyncSessionLocal() as db:
        report = await ReconciliationService(db).reconcile(org_id)

    return {
        "organisation_id": org_id,
        "tradable": str(report.tradable),
        "changed": report.changed,
    }


async def reconcile_all_organisations(ctx: dict) -> dict:
    """Scheduled sweep over every approved organisation."""
    async with AsyncSessionLocal() as db:
        try:
            reports = await ReconciliationService(db).reconcile_all()
        except Exception:
            log.exception("reconciliation_sweep_failed")
            capture_exception()
            raise

    corrected = [r.organisation_id for r in reports if r.changed]
    log.info("reconciliation_sweep_completed", organisations=len(reports), corrected=len(corrected))
    return {"organisations": len(reports), "corrected": corrected}


# Register functions for ARQ
ARQ_FUNCTIONS = [
    settle_transaction,
    reconcile_organisation,
]


async def _enqueue(function: str, *args) -> bool:
    from arq import create_pool

    try:
        redis = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
        await redis.enqueue_job(function, *args)
        await redis.close()
    except Exception as e:
        log.error("enqueue_failed", function=function, error=str(e))
        return False

    log.info("job_enqueued", function=function, args=[str(a) for a in args])
    return True


async def enqueue_settlement(tx_id: str) -> bool:
    """Queue automated settlement of a claimed listing."""
    return await _enqueue("settle_transaction", tx_id)


async def enqueue_reconciliation(org_id: str) -> bool:
    return await _enqueue("reconcile_organisation", org_id)


def _sweep_minutes() -> set[int]:
    interval = max(1, min(settings.RECONCILE_INTERVAL_MINUTES, 60))
    return set(range(0, 60, interval))


async def main():
    """Run the worker using arq cli."""
    print("Use: arq carbonex.worker.WorkerSettings")
    print(f"Redis: {settings.REDIS_URL}")


class WorkerSettings:
    """Settings for ARQ worker - use with 'arq carbonex.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    job_timeout = 300
    max_tries = MAX_TRIES
    functions = ARQ_FUNCTIONS
    cron_jobs = [
        cron(reconcile_all_organisations, minute=_sweep_minutes(), run_at_startup=True),
    ]


if __name__ == "__main__":
    asyncio.run(main())
