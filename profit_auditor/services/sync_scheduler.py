import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from profit_auditor.config import settings
from profit_auditor.models import Integration
from profit_auditor.services.ecommerce_metrics import calculate_daily_metrics
from profit_auditor.services.ecommerce_sync import sync_integration

logger = logging.getLogger(__name__)

SYNCABLE_CATEGORIES = ("ecommerce", "marketplace")


def due_integrations(db: Session, now: datetime) -> List[Integration]:
    return (
        db.query(Integration)
        .filter(Integration.category.in_(SYNCABLE_CATEGORIES),
                Integration.is_active.is_(True),
                (Integration.next_sync_at.is_(None)) | (Integration.next_sync_at <= now))
        .all()
    )


async def run_scheduled_sync(db: Session, client: Optional[httpx.AsyncClient] = None) -> List[Dict]:
    """Sync every due store; one failing store does not stop the rest."""
    now = datetime.utcnow()
    results = []

    for integration in due_integrations(db, now):
        frequency = integration.sync_frequency or settings.DEFAULT_SYNC_FREQUENCY
        next_sync = now + timedelta(seconds=frequency)
        try:
            counts = await sync_integration(db, integration, client=client)
        except Exception as e:
            logger.error(f"Scheduled sync failed for integration {integration.id}: {e}")
            db.rollback()
            integration.last_sync_status = {"status": "error", "message": str(e), "last_sync": now.isoformat()}
            integration.next_sync_at = next_sync
            db.commit()
            results.append({
                "integration_id": integration.id,
                "success": False,
                "error": str(e),
            })
            continue

        integration.last_sync_status = {"status": "success", "message": None, "last_sync": now.isoformat()}
        integration.next_sync_at = next_sync
        db.commit()
        results.append({
            "integration_id": integration.id,
            "success": True,
            "next_sync": next_sync.isoformat(),
            **counts,
        })

        # Stored sync status stands even when the metrics step fails
        try:
            calculate_daily_metrics(db, integration, now.date())
        except Exception as e:
            logger.error(f"Metrics calculation failed for integration {integration.id}: {e}", exc_info=True)
            db.rollback()

    logger.info(f"Scheduled sync processed {len(results)} integrations")
    return results


class SyncScheduler:
    def __init__(self, session_factory, interval_seconds: int = None):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.SYNC_INTERVAL_SECONDS
        self.scheduler = AsyncIOScheduler()

    def start(self):
        self.scheduler.add_job(
            self._sync_all,
            IntervalTrigger(seconds=self.interval_seconds),
            id='scheduled_ecommerce_sync',
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(f"Scheduled sync every {self.interval_seconds} seconds")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def _sync_all(self):
        db = self.session_factory()
        try:
            await run_scheduled_sync(db)
        except Exception as e:
            logger.error(f"Scheduled sync run failed: {e}", exc_info=True)
        finally:
            db.close()
