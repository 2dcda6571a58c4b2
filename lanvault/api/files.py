import re
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import Response

from lanvault.api.deps import client_ip, get_file_service, get_writer
from lanvault.core.clock import isoformat
from lanvault.core.errors import ValidationError
from lanvault.schemas.common import StandardResponse
from lanvault.schemas.file import CleanupOut, FileDeleteOut, FileOut, FileUploadOut
from lanvault.services.access import Principal
from lanvault.services.files import FileService

router = APIRouter()


_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def _header_value(value: str) -> str:
    # Header values must be latin-1 without control characters; percent-encode anything else
    try:
        value.encode("latin-1")
    except UnicodeEncodeError:
        return quote(value)
    if _CONTROL_CHARS.search(value):
        return quote(value)
    return value


def _content_disposition(filename: str) -> str:
    fallback = _CONTROL_CHARS.sub("", filename)
    fallback = fallback.encode("ascii", "replace").decode("ascii").replace('"', "'")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


# ============================================================================
# LIST FILES (public)
# ============================================================================

@router.get("", response_model=StandardResponse[List[FileOut]])
def list_files(
    device_id: Optional[str] = Query(None, alias="deviceId"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: FileService = Depends(get_file_service),
):
    """Active files only: deleted and expired records never show up."""
    files = service.list(device_id=device_id, limit=limit, offset=offset)
    return StandardResponse(
        success=True,
        message=f"Found {len(files)} file(s)",
        data=[FileOut.from_record(f) for f in files],
    )


# ============================================================================
# UPLOAD FILE (public)
# ============================================================================

@router.post("", response_model=StandardResponse[FileUploadOut])
def upload_file(
    request: Request,
    file: Optional[UploadFile] = File(None),
    device_id: Optional[str] = Form(None, alias="deviceId"),
    device_name: Optional[str] = Form(None, alias="deviceName"),
    expires_in_minutes: Optional[str] = Form(None, alias="expiresInMinutes"),
    service: FileService = Depends(get_file_service),
):
    """
    - No API key needed (public sharing)
    - Plaintext is encrypted with a fresh per-file key before it is stored
    - Without deviceId the upload is attributed to an anonymous device
    """
    if file is None:
        raise ValidationError("No file uploaded")
    try:
        record = service.upload(
            file.file,
            file.filename,
            mime_type=file.content_type,
            source_ip=client_ip(request),
            device_id=device_id,
            device_name=device_name,
            expires_in_minutes=expires_in_minutes,
        )
    finally:
        # Drops the framework's spooled plaintext copy
        file.file.close()

    return StandardResponse(
        success=True,
        message=f"File {record.original_name} uploaded",
        data=FileUploadOut.from_record(record),
    )


# ============================================================================
# CLEANUP EXPIRED FILES (write)
# ============================================================================

@router.post("/cleanup", response_model=StandardResponse[CleanupOut])
def cleanup_files(
    service: FileService = Depends(get_file_service),
    _: Principal = Depends(get_writer),
):
    result = service.cleanup()
    return StandardResponse(
        success=True,
        message="Cleanup finished",
        data=CleanupOut(expired_files=result["expired"], cleaned_files=result["reclaimed"]),
    )


# ============================================================================
# DOWNLOAD FILE (public share link)
# ============================================================================

@router.get("/{file_id}")
def download_file(
    file_id: str,
    service: FileService = Depends(get_file_service),
):
    record, data = service.download(file_id)
    owner = record.owner
    headers = {
        "Content-Disposition": _content_disposition(record.original_name),
        "X-File-Device": _header_value(owner.name if owner is not None else "Unknown Device"),
        "X-File-Upload-Time": isoformat(record.upload_time),
    }
    return Response(
        content=data,
        media_type=record.mime_type or "application/octet-stream",
        headers=headers,
    )


# ============================================================================
# FILE INFO (public)
# ============================================================================

@router.get("/{file_id}/info", response_model=StandardResponse[FileOut])
def get_file_info(
    file_id: str,
    service: FileService = Depends(get_file_service),
):
    record = service.info(file_id)
    return StandardResponse(success=True, message="File info", data=FileOut.from_record(record))


# ============================================================================
# DELETE FILE (write)
# ============================================================================

@router.delete("/{file_id}", response_model=StandardResponse[FileDeleteOut])
def delete_file(
    file_id: str,
    service: FileService = Depends(get_file_service),
    _: Principal = Depends(get_writer),
):
    result = service.delete(file_id)
    return StandardResponse(success=True, message="File deleted", data=FileDeleteOut(**result))
