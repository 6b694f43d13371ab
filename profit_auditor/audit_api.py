"""
Audit generation, audit history, chat and dashboard endpoints
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from profit_auditor.ai.audit_synthesizer import (
    AuditGenerationError, AuditSynthesizer, NoAuditData, clear_audits, latest_audit
)
from profit_auditor.ai.chat import AuditChat
from profit_auditor.database import get_db
from profit_auditor.models import FinancialAudit
from profit_auditor.schemas import ChatRequest, GenerateAuditRequest
from profit_auditor.services.dashboard import dashboard_metrics
from profit_auditor.utils import AppException, paginate_query, to_dict

logger = logging.getLogger(__name__)

audit_router = APIRouter(tags=["Audits"])


def get_audit_synthesizer() -> AuditSynthesizer:
    return AuditSynthesizer()


def get_audit_chat() -> AuditChat:
    return AuditChat()


@audit_router.post("/generate-audit")
def generate_audit(
    request: GenerateAuditRequest,
    db: Session = Depends(get_db),
    synthesizer: AuditSynthesizer = Depends(get_audit_synthesizer),
):
    try:
        audit = synthesizer.generate(db, request.user_id, request.month, request.year,
                                     clear_previous=request.clear_previous)
    except NoAuditData as e:
        raise AppException(status_code=400, detail=str(e))
    except AuditGenerationError as e:
        db.rollback()
        logger.error(f"Audit generation failed for user {request.user_id}: {e}")
        raise AppException(status_code=500, detail=str(e))

    return {"success": True, "audit": to_dict(audit)}


@audit_router.get("/audits")
def list_audits(
    user_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = (
        db.query(FinancialAudit)
        .filter(FinancialAudit.user_id == user_id)
        .order_by(FinancialAudit.created_at.desc(), FinancialAudit.id.desc())
    )
    result = paginate_query(query, page, per_page)
    result["items"] = [to_dict(a) for a in result["items"]]
    return result


@audit_router.get("/audits/latest")
def get_latest_audit(user_id: str, db: Session = Depends(get_db)):
    audit = latest_audit(db, user_id)
    return {"audit": to_dict(audit) if audit else None}


@audit_router.delete("/audits")
def delete_audits(user_id: str, db: Session = Depends(get_db)):
    count = clear_audits(db, user_id)
    return {"status": "success", "deleted": count}


@audit_router.post("/chat-with-audit")
def chat_with_audit(request: ChatRequest, chat: AuditChat = Depends(get_audit_chat)):
    try:
        answer = chat.ask(request.query, request.auditContext)
    except Exception as e:
        logger.error(f"Error in chat-with-audit: {e}", exc_info=True)
        raise AppException(status_code=500, detail=str(e))
    return {"response": answer}


@audit_router.get("/dashboard-metrics")
def get_dashboard_metrics(user_id: str, db: Session = Depends(get_db)):
    return dashboard_metrics(db, user_id)
