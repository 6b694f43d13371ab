"""
Spreadsheet intake and processing.

Intake stores the raw bytes in blob storage and records an upload row.
Processing reads the stored file back, classifies its columns, aggregates the
rows and writes the result onto the upload row.
"""

import logging
from datetime import datetime
from typing import List

from sqlalchemy.orm import Session

from profit_auditor.config import settings
from profit_auditor.models import SpreadsheetUpload
from profit_auditor.services.storage import BlobStorage
from profit_auditor.spreadsheet.aggregator import AggregateMetrics, aggregate_rows, combine_metrics, metrics_from_analysis
from profit_auditor.spreadsheet.classifier import classify_columns
from profit_auditor.spreadsheet.reader import SpreadsheetError, file_extension, read_spreadsheet
from profit_auditor.utils import format_currency, format_percentage

logger = logging.getLogger(__name__)


class UploadNotFound(Exception):
    pass


def validate_upload(filename: str, content: bytes):
    ext = file_extension(filename)
    if ext not in settings.ALLOWED_UPLOAD_EXTENSIONS:
        raise SpreadsheetError("Please upload only Excel or CSV files")
    if len(content) == 0:
        raise SpreadsheetError("Empty file uploaded")
    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise SpreadsheetError(f"File exceeds the {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB upload limit")


def clear_user_uploads(db: Session, storage: BlobStorage, user_id: str) -> int:
    uploads = db.query(SpreadsheetUpload).filter(SpreadsheetUpload.user_id == user_id).all()
    for upload in uploads:
        storage.delete(upload.file_path)
        db.delete(upload)
    db.commit()
    logger.info(f"Cleared {len(uploads)} previous uploads for user {user_id}")
    return len(uploads)


def create_upload(db: Session, storage: BlobStorage, user_id: str, filename: str,
                  content: bytes, content_type: str = None) -> SpreadsheetUpload:
    validate_upload(filename, content)

    key = storage.save(user_id, filename, content)
    upload = SpreadsheetUpload(
        user_id=user_id,
        filename=filename,
        file_type=content_type or file_extension(filename).lstrip("."),
        file_path=key,
        processed=False,
    )
    try:
        db.add(upload)
        db.commit()
        db.refresh(upload)
    except Exception:
        # Don't leave orphaned blobs behind a failed insert
        db.rollback()
        storage.delete(key)
        raise

    logger.info(f"Recorded upload {upload.id} ({filename}) for user {user_id}")
    return upload


def get_upload(db: Session, upload_id: int) -> SpreadsheetUpload:
    upload = db.query(SpreadsheetUpload).filter(SpreadsheetUpload.id == upload_id).first()
    if not upload:
        raise UploadNotFound(f"Upload not found: {upload_id}")
    return upload


def analyze_content(content: bytes, filename: str) -> dict:
    sheet = read_spreadsheet(content, filename)
    roles = classify_columns(sheet.headers)
    metrics = aggregate_rows(sheet.rows, sheet.headers)

    logger.info(f"Column roles for {filename}: {dict(zip(sheet.headers, roles))}")

    return {
        "total_rows": metrics.total_rows,
        "column_roles": dict(zip(sheet.headers, roles)),
        "financial_metrics": metrics.financial_metrics(),
        "top_products": metrics.top_products,
        "summary": (
            f"Analysis of {metrics.total_rows} records shows total revenue of "
            f"{format_currency(metrics.total_revenue)} with a profit margin of "
            f"{format_percentage(metrics.profit_margin)}."
        ),
        "processed_at": datetime.utcnow().isoformat(),
    }


def process_upload(db: Session, storage: BlobStorage, upload_id: int) -> SpreadsheetUpload:
    """
    Read, classify and aggregate a stored upload. Failures are recorded on the
    upload row and re-raised.
    """
    upload = get_upload(db, upload_id)
    logger.info(f"Processing upload {upload.id}: {upload.filename}")

    try:
        content = storage.read(upload.file_path)
        analysis = analyze_content(content, upload.filename)
    except Exception as e:
        logger.error(f"Error processing upload {upload.id}: {e}", exc_info=True)
        upload.processed = False
        upload.processing_error = str(e)
        db.commit()
        raise

    upload.analysis_results = analysis
    upload.row_count = analysis["total_rows"]
    upload.processed = True
    upload.processing_error = None
    upload.analyzed_at = datetime.utcnow()
    db.commit()
    db.refresh(upload)
    return upload


def delete_upload(db: Session, storage: BlobStorage, upload_id: int):
    upload = get_upload(db, upload_id)
    storage.delete(upload.file_path)
    db.delete(upload)
    db.commit()


def user_spreadsheet_metrics(db: Session, user_id: str) -> tuple:
    """Combined aggregate over every processed upload of a user, and the upload count."""
    uploads: List[SpreadsheetUpload] = (
        db.query(SpreadsheetUpload)
        .filter(SpreadsheetUpload.user_id == user_id, SpreadsheetUpload.processed.is_(True))
        .order_by(SpreadsheetUpload.uploaded_at.asc())
        .all()
    )
    parts = [metrics_from_analysis(u.analysis_results) for u in uploads if u.analysis_results]
    combined: AggregateMetrics = combine_metrics(parts)
    return combined, len(parts)
