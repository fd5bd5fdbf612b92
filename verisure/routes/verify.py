"""Public verification endpoints (no authentication)."""

import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from verisure import qr
from verisure.dependencies import get_verification_service
from verisure.schemas import QRImageVerificationOut, VerificationOut
from verisure.verification import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/verify", tags=["verification"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024  # 10MB


@router.get("/by-qr", response_model=VerificationOut)
async def verify_by_qr(
    token: str = Query(..., min_length=1, max_length=512),
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.verify_by_qr(token)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No product matches this QR code")
    return result


@router.post("/qr-image", response_model=QRImageVerificationOut)
async def verify_by_qr_image(
    file: UploadFile = File(...),
    service: VerificationService = Depends(get_verification_service),
):
    """
    Verify a product from an uploaded QR image.

    The token comes from the image pixels when a symbol is found, otherwise
    from the uploaded file's name. ``result`` is null when nothing matches.
    """
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Image too large")

    extracted = await asyncio.to_thread(qr.extract_token, data, file.filename)
    if extracted.token is None:
        return QRImageVerificationOut(token=None, token_source=extracted.source)

    result = await service.verify_by_qr(extracted.token)
    logger.info(
        f"QR image verification via {extracted.source}: {'match' if result else 'no match'}",
        extra={'token_source': extracted.source}
    )
    return QRImageVerificationOut(
        token=extracted.token,
        token_source=extracted.source,
        result=VerificationOut.model_validate(result) if result else None,
    )


@router.get("/{product_id}", response_model=VerificationOut)
async def verify_by_id(
    product_id: str,
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.verify_by_id(product_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return result
