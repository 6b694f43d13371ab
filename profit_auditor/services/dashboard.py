from sqlalchemy.orm import Session

from profit_auditor.ai.audit_synthesizer import TRACKED_METRICS
from profit_auditor.models import AuditMetricHistory


def dashboard_metrics(db: Session, user_id: str) -> dict:
    """Latest value and change percentage per tracked metric; zeros when no audit exists."""
    metrics = {metric: 0.0 for metric in TRACKED_METRICS}
    changes = {metric: 0.0 for metric in TRACKED_METRICS}

    for metric in TRACKED_METRICS:
        record = (
            db.query(AuditMetricHistory)
            .filter(AuditMetricHistory.user_id == user_id, AuditMetricHistory.metric_type == metric)
            .order_by(AuditMetricHistory.recorded_at.desc(), AuditMetricHistory.id.desc())
            .first()
        )
        if record:
            metrics[metric] = record.metric_value
            changes[metric] = record.change_percentage or 0.0

    return {"metrics": metrics, "changes": changes}
