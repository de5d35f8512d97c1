"""Identity verification and registration flow."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, UploadFile
from pydantic import BaseModel

from ..errors import VerificationError
from ..kyc.capture import CaptureError, CaptureKind
from ..kyc.flow import KYCFlow, KYCStep
from ..utils.sanitization import sanitize_filename
from ..utils.validation import normalize_phone
from .deps import Services, get_flow_or_404, get_language, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/kyc", tags=["kyc"])

# Largest accepted upload, per file
MAX_IMAGE_BYTES = 10 * 1024 * 1024
MAX_VIDEO_BYTES = 50 * 1024 * 1024


class StartKYCRequest(BaseModel):
    phone: str


def _read_upload(file: UploadFile, flow: KYCFlow, kind: CaptureKind | None = None) -> bytes:
    """Read an uploaded capture, refusing anything over the size limit.

    ``kind`` is None for the liveness video.
    """
    limit = MAX_VIDEO_BYTES if kind is None else MAX_IMAGE_BYTES
    content = file.file.read(limit + 1)
    name = sanitize_filename(file.filename)
    if len(content) > limit:
        logger.warning(f"KYC {flow.id}: rejected {name}, larger than {limit} bytes")
        if kind is None:
            raise VerificationError(
                f"Upload exceeds {limit} bytes", code="UPLOAD_TOO_LARGE", details={"limit": limit}
            )
        raise CaptureError(kind, [f"upload exceeds {limit} bytes"])

    logger.info(f"KYC {flow.id}: received {name} ({len(content)} bytes)")
    return content


def _view(services: Services, flow: KYCFlow) -> dict:
    view = flow.to_dict()
    if flow.step == KYCStep.COMPLETED:
        # Registration stored a session; make the login state reflect it
        services.auth.restore()
        services.discard_flow(flow.id)
    return view


@router.post("", status_code=201)
def start_kyc(
    body: StartKYCRequest,
    services: Services = Depends(get_services),
    lang: str = Depends(get_language),
):
    flow = services.new_flow(normalize_phone(body.phone), lang=lang)
    flow.start()
    return flow.to_dict()


@router.get("/{flow_id}")
def get_kyc(flow_id: str, services: Services = Depends(get_services)):
    return get_flow_or_404(services, flow_id).to_dict()


@router.post("/{flow_id}/id-front")
def capture_id_front(
    flow_id: str,
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
):
    flow = get_flow_or_404(services, flow_id)
    flow.capture_id_front(_read_upload(file, flow, CaptureKind.ID_FRONT))
    return flow.to_dict()


@router.post("/{flow_id}/id-back")
def capture_id_back(
    flow_id: str,
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
):
    flow = get_flow_or_404(services, flow_id)
    flow.capture_id_back(_read_upload(file, flow, CaptureKind.ID_BACK))
    return flow.to_dict()


@router.post("/{flow_id}/selfie")
def capture_selfie(
    flow_id: str,
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
):
    """Take the selfie and run verification and registration."""
    flow = get_flow_or_404(services, flow_id)
    flow.capture_selfie(_read_upload(file, flow, CaptureKind.SELFIE))
    return _view(services, flow)


@router.post("/{flow_id}/liveness")
def check_liveness(
    flow_id: str,
    file: UploadFile = File(...),
    services: Services = Depends(get_services),
):
    flow = get_flow_or_404(services, flow_id)
    flow.check_liveness(_read_upload(file, flow))
    return flow.to_dict()


@router.post("/{flow_id}/retry-selfie")
def retry_selfie(flow_id: str, services: Services = Depends(get_services)):
    flow = get_flow_or_404(services, flow_id)
    flow.retry_selfie()
    return flow.to_dict()


@router.post("/{flow_id}/continue")
def force_continue(flow_id: str, services: Services = Depends(get_services)):
    """Register even though the face match failed."""
    flow = get_flow_or_404(services, flow_id)
    flow.force_continue()
    return _view(services, flow)


@router.post("/{flow_id}/restart")
def restart(flow_id: str, services: Services = Depends(get_services)):
    """Drop everything captured and return to the intro step."""
    flow = get_flow_or_404(services, flow_id)
    flow.restart()
    return flow.to_dict()


@router.post("/{flow_id}/start")
def start_capture(flow_id: str, services: Services = Depends(get_services)):
    flow = get_flow_or_404(services, flow_id)
    flow.start()
    return flow.to_dict()
