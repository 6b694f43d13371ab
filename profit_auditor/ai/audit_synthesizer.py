"""
Audit synthesis: gathers a user's figures for a month, asks the language model
for an audit and stores what comes back.
"""

import json
import logging
from calendar import monthrange
from datetime import datetime
from typing import Any, Dict, List, Optional

from openai import OpenAI
from sqlalchemy.orm import Session

from profit_auditor.config import settings
from profit_auditor.models import (
    AuditMetricHistory, CrmDeal, EcommerceMetric, EcommerceSale, FinancialAudit,
    FinancialTransaction, PaymentTransaction
)
from profit_auditor.services.uploads import user_spreadsheet_metrics
from profit_auditor.spreadsheet.aggregator import coerce_number
from profit_auditor.utils import percentage_change, to_dict

logger = logging.getLogger(__name__)

TRACKED_METRICS = ("revenue", "profit_margin", "expense_ratio", "audit_alerts")

AUDIT_SYSTEM_PROMPT = """You are a financial auditor AI for small online businesses.
You receive a JSON payload with aggregated spreadsheet metrics, accounting transactions,
e-commerce sales and daily metrics, payment transactions and CRM deals for one month,
plus the previous audit's monthly metrics when one exists.

Respond with ONLY a JSON object in exactly this format:
{
  "summary": "Brief overview of the business's financial position for the month",
  "monthly_metrics": {
    "revenue": number,
    "profit_margin": number,
    "expense_ratio": number,
    "audit_alerts": number,
    "previous_month": {"revenue": number, "profit_margin": number, "expense_ratio": number, "audit_alerts": number}
  },
  "kpis": [{"metric": "KPI name", "value": "formatted value", "trend": "+0%"}],
  "recommendations": [{"title": "Short title", "description": "Actionable detail", "impact": "High|Medium|Low", "difficulty": "High|Medium|Low"}],
  "alerts": [{"title": "Alert title", "severity": "high|medium|low", "description": "What needs attention"}]
}

Rules:
1. profit_margin and expense_ratio are percentages of revenue.
2. Base every figure on the payload; do not invent data.
3. No markdown, comments or text outside the JSON object."""


class AuditGenerationError(Exception):
    """Raised when the model call fails or its reply cannot be used"""


class NoAuditData(Exception):
    """Raised when there is nothing to audit for the requested period"""


def _month_bounds(month: int, year: int):
    start = datetime(year, month, 1)
    end = datetime(year, month, monthrange(year, month)[1], 23, 59, 59, 999999)
    return start, end


def _clean_json_string(json_str: str) -> str:
    """Strip markdown fences the model sometimes wraps around JSON"""
    return json_str.replace('```json', '').replace('```', '').strip()


def parse_audit_response(content: Optional[str]) -> Dict[str, Any]:
    if not content:
        raise AuditGenerationError("Empty response from language model")
    try:
        result = json.loads(_clean_json_string(content))
    except json.JSONDecodeError as e:
        raise AuditGenerationError(f"Language model returned malformed JSON: {e}") from e
    if not isinstance(result, dict):
        raise AuditGenerationError("Language model response is not a JSON object")
    return result


class AuditSynthesizer:
    def __init__(self, api_key: str = None, client=None, model: str = None):
        self.client = client or OpenAI(
            api_key=api_key or settings.OPENAI_API_KEY,
            organization=settings.OPENAI_ORG_ID,
        )
        self.model = model or settings.OPENAI_MODEL

    def build_payload(self, db: Session, user_id: str, month: int, year: int) -> Dict[str, Any]:
        start, end = _month_bounds(month, year)
        limit = settings.AUDIT_MAX_RECORDS

        spreadsheet_metrics, upload_count = user_spreadsheet_metrics(db, user_id)

        transactions = (
            db.query(FinancialTransaction)
            .filter(FinancialTransaction.user_id == user_id,
                    FinancialTransaction.transaction_date >= start,
                    FinancialTransaction.transaction_date <= end)
            .order_by(FinancialTransaction.transaction_date.asc())
            .limit(limit).all()
        )
        sales = (
            db.query(EcommerceSale)
            .filter(EcommerceSale.user_id == user_id,
                    EcommerceSale.sale_date >= start,
                    EcommerceSale.sale_date <= end)
            .order_by(EcommerceSale.sale_date.asc())
            .limit(limit).all()
        )
        daily_metrics = (
            db.query(EcommerceMetric)
            .filter(EcommerceMetric.user_id == user_id,
                    EcommerceMetric.metric_date >= start.date(),
                    EcommerceMetric.metric_date <= end.date())
            .order_by(EcommerceMetric.metric_date.asc())
            .limit(limit).all()
        )
        payments = (
            db.query(PaymentTransaction)
            .filter(PaymentTransaction.user_id == user_id,
                    PaymentTransaction.created_at >= start,
                    PaymentTransaction.created_at <= end)
            .limit(limit).all()
        )
        deals = (
            db.query(CrmDeal)
            .filter(CrmDeal.user_id == user_id)
            .filter((CrmDeal.close_date.is_(None)) | ((CrmDeal.close_date >= start) & (CrmDeal.close_date <= end)))
            .limit(limit).all()
        )
        previous = latest_audit(db, user_id)

        return {
            "period": {"month": month, "year": year},
            "spreadsheet_metrics": spreadsheet_metrics.to_dict() if upload_count else None,
            "spreadsheet_count": upload_count,
            "transactions": [to_dict(t, exclude=("user_id",)) for t in transactions],
            "ecommerce": {
                "sales": [to_dict(s, exclude=("user_id",)) for s in sales],
                "daily_metrics": [to_dict(m, exclude=("user_id",)) for m in daily_metrics],
            },
            "payments": [to_dict(p, exclude=("user_id",)) for p in payments],
            "crm_deals": [to_dict(d, exclude=("user_id",)) for d in deals],
            "previous_month": previous.monthly_metrics if previous else None,
        }

    @staticmethod
    def has_data(payload: Dict[str, Any]) -> bool:
        return bool(
            payload["spreadsheet_count"]
            or payload["transactions"]
            or payload["ecommerce"]["sales"]
            or payload["ecommerce"]["daily_metrics"]
            or payload["payments"]
            or payload["crm_deals"]
        )

    def request_audit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logger.info(f"Requesting audit from {self.model}")
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": AUDIT_SYSTEM_PROMPT},
                    {"role": "user", "content": f"Audit this financial data: {json.dumps(payload, default=str)}"}
                ],
                temperature=settings.OPENAI_TEMPERATURE,
                response_format={"type": "json_object"},
            )
        except Exception as e:
            logger.error(f"Language model request failed: {e}")
            raise AuditGenerationError(f"Language model request failed: {e}") from e

        content = response.choices[0].message.content
        logger.debug(f"Raw model response: {content}")
        return parse_audit_response(content)

    def generate(self, db: Session, user_id: str, month: int, year: int,
                 clear_previous: bool = False) -> FinancialAudit:
        logger.info(f"Starting audit for user {user_id}, period {year}-{month:02d}")

        if clear_previous:
            clear_audits(db, user_id)

        payload = self.build_payload(db, user_id, month, year)
        if not self.has_data(payload):
            raise NoAuditData("No data available to audit for this period")

        result = self.request_audit(payload)
        previous = latest_audit(db, user_id)

        audit = FinancialAudit(
            user_id=user_id,
            audit_date=datetime.utcnow(),
            period_month=month,
            period_year=year,
            summary=str(result.get("summary") or ""),
            monthly_metrics=result.get("monthly_metrics") or {},
            kpis=result.get("kpis") or [],
            recommendations=result.get("recommendations") or [],
            alerts=result.get("alerts") or [],
            analysis_metadata={
                "model": self.model,
                "spreadsheet_count": payload["spreadsheet_count"],
                "record_counts": {
                    "transactions": len(payload["transactions"]),
                    "sales": len(payload["ecommerce"]["sales"]),
                    "daily_metrics": len(payload["ecommerce"]["daily_metrics"]),
                    "payments": len(payload["payments"]),
                    "crm_deals": len(payload["crm_deals"]),
                },
                "raw_response": result,
            },
        )
        db.add(audit)
        db.flush()

        record_metric_history(db, audit, previous, payload.get("spreadsheet_metrics"))
        db.commit()
        db.refresh(audit)

        logger.info(f"Stored audit {audit.id} for user {user_id}")
        return audit


def latest_audit(db: Session, user_id: str) -> Optional[FinancialAudit]:
    return (
        db.query(FinancialAudit)
        .filter(FinancialAudit.user_id == user_id)
        .order_by(FinancialAudit.created_at.desc(), FinancialAudit.id.desc())
        .first()
    )


def clear_audits(db: Session, user_id: str) -> int:
    db.query(AuditMetricHistory).filter(AuditMetricHistory.user_id == user_id).delete()
    count = db.query(FinancialAudit).filter(FinancialAudit.user_id == user_id).delete()
    db.commit()
    logger.info(f"Deleted {count} previous audits for user {user_id}")
    return count


def audit_metric_values(audit: FinancialAudit, fallback: Optional[Dict[str, Any]] = None) -> Dict[str, float]:
    """Numeric view of an audit's monthly metrics, filling gaps from spreadsheet totals."""
    monthly = audit.monthly_metrics if isinstance(audit.monthly_metrics, dict) else {}
    fallback = fallback or {}
    alerts = audit.alerts if isinstance(audit.alerts, list) else []

    defaults = {
        "revenue": fallback.get("total_revenue", 0.0),
        "profit_margin": fallback.get("profit_margin", 0.0),
        "expense_ratio": fallback.get("expense_ratio", 0.0),
        "audit_alerts": len(alerts),
    }
    values = {}
    for metric in TRACKED_METRICS:
        raw = monthly.get(metric)
        values[metric] = coerce_number(raw) if raw is not None else coerce_number(defaults[metric])
    return values


def record_metric_history(db: Session, audit: FinancialAudit, previous: Optional[FinancialAudit],
                          spreadsheet_metrics: Optional[Dict[str, Any]] = None) -> List[AuditMetricHistory]:
    current = audit_metric_values(audit, spreadsheet_metrics)
    before = audit_metric_values(previous) if previous else {}

    rows = []
    for metric in TRACKED_METRICS:
        previous_value = before.get(metric)
        row = AuditMetricHistory(
            audit_id=audit.id,
            user_id=audit.user_id,
            metric_type=metric,
            metric_value=current[metric],
            previous_value=previous_value,
            change_percentage=percentage_change(current[metric], previous_value),
        )
        db.add(row)
        rows.append(row)
    return rows
