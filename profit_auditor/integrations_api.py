"""
Integration management, e-commerce sync and analytics transaction endpoints
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from profit_auditor.database import get_db
from profit_auditor.models import (
    EcommerceMetric, EcommerceProduct, EcommerceSale, FinancialTransaction, Integration
)
from profit_auditor.schemas import IntegrationCreate, MetricsRequest, SyncRequest, TransactionCreate
from profit_auditor.services.ecommerce_metrics import calculate_daily_metrics
from profit_auditor.services.ecommerce_sync import SyncError, sync_integration
from profit_auditor.services.sync_scheduler import run_scheduled_sync
from profit_auditor.utils import AppException, to_dict

logger = logging.getLogger(__name__)

integrations_router = APIRouter(tags=["Integrations"])


def serialize_integration(integration: Integration) -> dict:
    data = to_dict(integration, exclude=("credentials",))
    # Never echo secrets back, only which ones are set
    data["credential_keys"] = sorted((integration.credentials or {}).keys())
    return data


def _get_integration(db: Session, integration_id: int) -> Integration:
    integration = db.query(Integration).filter(Integration.id == integration_id).first()
    if not integration:
        raise AppException(status_code=404, detail=f"Integration not found: {integration_id}")
    return integration


@integrations_router.post("/integrations")
def create_integration(request: IntegrationCreate, db: Session = Depends(get_db)):
    integration = Integration(
        user_id=request.user_id,
        category=request.category,
        platform=request.platform,
        store_url=request.store_url,
        store_name=request.store_name,
        credentials=request.credentials,
        sync_frequency=request.sync_frequency,
        extra_metadata=request.metadata,
        is_active=True,
    )
    db.add(integration)
    db.commit()
    db.refresh(integration)
    logger.info(f"Connected {integration.category}/{integration.platform} for user {integration.user_id}")
    return {"status": "success", "data": serialize_integration(integration)}


@integrations_router.get("/integrations")
def list_integrations(user_id: str, category: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(Integration).filter(Integration.user_id == user_id)
    if category:
        query = query.filter(Integration.category == category.lower())
    return {"integrations": [serialize_integration(i) for i in query.order_by(Integration.created_at.asc()).all()]}


@integrations_router.delete("/integrations/{integration_id}")
def delete_integration(integration_id: int, db: Session = Depends(get_db)):
    integration = _get_integration(db, integration_id)
    for model in (EcommerceSale, EcommerceProduct, EcommerceMetric):
        db.query(model).filter(model.integration_id == integration_id).delete()
    db.delete(integration)
    db.commit()
    return {"status": "success", "message": f"Removed integration {integration_id}"}


@integrations_router.post("/sync-ecommerce")
async def sync_ecommerce(request: SyncRequest, db: Session = Depends(get_db)):
    integration = _get_integration(db, request.integration_id)
    try:
        counts = await sync_integration(db, integration)
    except SyncError as e:
        raise AppException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error syncing integration {integration.id}: {e}", exc_info=True)
        raise AppException(status_code=500, detail=str(e))
    return {"success": True, **counts}


@integrations_router.post("/calculate-ecommerce-metrics")
def calculate_ecommerce_metrics(request: MetricsRequest, db: Session = Depends(get_db)):
    integration = _get_integration(db, request.integration_id)
    try:
        metrics = calculate_daily_metrics(db, integration, request.date)
    except Exception as e:
        logger.error(f"Error calculating metrics: {e}", exc_info=True)
        raise AppException(status_code=500, detail=str(e))
    return {"success": True, "metrics": metrics}


@integrations_router.post("/scheduled-sync")
async def scheduled_sync(db: Session = Depends(get_db)):
    try:
        results = await run_scheduled_sync(db)
    except Exception as e:
        logger.error(f"Error in scheduled sync: {e}", exc_info=True)
        raise AppException(status_code=500, detail=str(e))
    return {"success": True, "syncs_processed": len(results), "results": results}


@integrations_router.get("/transactions")
def list_transactions(user_id: str, days: int = Query(default=30, ge=1, le=366), db: Session = Depends(get_db)):
    start = datetime.utcnow() - timedelta(days=days)
    transactions = (
        db.query(FinancialTransaction)
        .filter(FinancialTransaction.user_id == user_id, FinancialTransaction.transaction_date >= start)
        .order_by(FinancialTransaction.transaction_date.asc())
        .all()
    )
    return {"transactions": [to_dict(t) for t in transactions]}


@integrations_router.post("/transactions")
def create_transaction(request: TransactionCreate, db: Session = Depends(get_db)):
    transaction_date = request.transaction_date
    if transaction_date.tzinfo is not None:
        transaction_date = transaction_date.replace(tzinfo=None) - transaction_date.utcoffset()
    transaction = FinancialTransaction(**request.model_dump(exclude={"transaction_date"}), transaction_date=transaction_date)
    db.add(transaction)
    db.commit()
    db.refresh(transaction)
    return {"status": "success", "data": to_dict(transaction)}
