"""
Spreadsheet upload and processing endpoints
"""

import logging

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from profit_auditor.database import get_db
from profit_auditor.models import SpreadsheetUpload
from profit_auditor.schemas import ProcessSpreadsheetRequest
from profit_auditor.services import uploads
from profit_auditor.services.storage import BlobStorage, get_storage
from profit_auditor.spreadsheet.reader import SpreadsheetError
from profit_auditor.utils import AppException, paginate_query, to_dict

logger = logging.getLogger(__name__)

spreadsheet_router = APIRouter(tags=["Spreadsheets"])


@spreadsheet_router.post("/upload-spreadsheet")
async def upload_spreadsheet(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    clear_previous: bool = Form(False),
    auto_process: bool = Form(True),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    logger.info(f"Received spreadsheet upload: {file.filename} from user {user_id}")
    contents = await file.read()

    try:
        uploads.validate_upload(file.filename, contents)
        if clear_previous:
            uploads.clear_user_uploads(db, storage, user_id)
        upload = uploads.create_upload(db, storage, user_id, file.filename, contents, file.content_type)
    except SpreadsheetError as e:
        raise AppException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error processing upload: {e}", exc_info=True)
        raise AppException(status_code=400, detail=str(e))

    message = "File uploaded successfully"
    if auto_process:
        try:
            upload = uploads.process_upload(db, storage, upload.id)
            message = "File uploaded and processed successfully"
        except Exception:
            # The failure is recorded on the upload row and returned with it
            db.refresh(upload)
            message = "File uploaded but processing failed"

    return {"message": message, "data": to_dict(upload)}


@spreadsheet_router.post("/process-spreadsheet")
def process_spreadsheet(
    request: ProcessSpreadsheetRequest,
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    try:
        upload = uploads.process_upload(db, storage, request.uploadId)
    except uploads.UploadNotFound as e:
        return JSONResponse(status_code=404, content={"success": False, "error": str(e)})
    except Exception as e:
        return JSONResponse(status_code=500, content={"success": False, "error": str(e) or "Error processing spreadsheet"})

    return {"success": True, "analysis": upload.analysis_results}


@spreadsheet_router.get("/uploads")
def list_uploads(
    user_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = (
        db.query(SpreadsheetUpload)
        .filter(SpreadsheetUpload.user_id == user_id)
        .order_by(SpreadsheetUpload.uploaded_at.desc(), SpreadsheetUpload.id.desc())
    )
    result = paginate_query(query, page, per_page)
    result["items"] = [to_dict(u) for u in result["items"]]
    return result


@spreadsheet_router.delete("/uploads/{upload_id}")
def delete_upload(upload_id: int, db: Session = Depends(get_db), storage: BlobStorage = Depends(get_storage)):
    try:
        uploads.delete_upload(db, storage, upload_id)
    except uploads.UploadNotFound as e:
        raise AppException(status_code=404, detail=str(e))
    return {"status": "success", "message": f"Deleted upload {upload_id}"}
