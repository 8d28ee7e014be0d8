"""Routes for chat attachment uploads."""

from __future__ import annotations

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
)
from pydantic import BaseModel

from ..chat import TurnOrchestrator
from ..services.attachments import (
    AttachmentError,
    AttachmentService,
    AttachmentTooLarge,
    AttachmentUploadFailed,
    UnsupportedAttachmentType,
)
from .chat import get_orchestrator

router = APIRouter(prefix="/api/uploads", tags=["uploads"])


def get_attachment_service(request: Request) -> AttachmentService:
    service = getattr(request.app.state, "attachment_service", None)
    if service is None:
        raise HTTPException(status_code=500, detail="Attachment service unavailable")
    return service


class UploadedFileResource(BaseModel):
    """Response payload describing a forwarded attachment."""

    id: str
    sessionId: str
    filename: str
    mimeType: str
    sizeBytes: int


class AttachmentUploadResponse(BaseModel):
    file: UploadedFileResource


@router.post("", response_model=AttachmentUploadResponse, status_code=201)
async def upload_attachment(
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    service: AttachmentService = Depends(get_attachment_service),
    file: UploadFile = File(...),
    session_id: str | None = Form(default=None),
) -> AttachmentUploadResponse:
    session = orchestrator.session_for(session_id)
    try:
        uploaded = await service.save_upload(session=session, upload=file)
    except UnsupportedAttachmentType as exc:
        raise HTTPException(status_code=415, detail=f"Unsupported attachment type: {exc}") from exc
    except AttachmentTooLarge as exc:
        raise HTTPException(status_code=413, detail=str(exc)) from exc
    except AttachmentUploadFailed as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail=f"File upload failed: {exc.detail}",
        ) from exc
    except AttachmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return AttachmentUploadResponse(
        file=UploadedFileResource(
            id=uploaded.id,
            sessionId=session.session_id,
            filename=uploaded.filename,
            mimeType=uploaded.mime_type,
            sizeBytes=uploaded.size_bytes,
        )
    )


@router.delete("/{file_id}", status_code=204)
async def delete_attachment(
    file_id: str,
    session_id: str | None = Query(default=None),
    orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    service: AttachmentService = Depends(get_attachment_service),
) -> Response:
    session = orchestrator.find_session(session_id)
    await service.delete(file_id, session=session)
    return Response(status_code=204)


__all__ = ["router", "get_attachment_service"]
