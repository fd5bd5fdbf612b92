"""
Manufacturer and admin endpoints: register products, list them, download
their QR codes and flag counterfeits.
"""

import asyncio
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response, status

from verisure import qr
from verisure.auth import Principal, require_roles
from verisure.dependencies import get_verification_service
from verisure.schemas import FlagOut, ProductCreate, ProductOut, RegistrationOut
from verisure.verification import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


@router.post("", response_model=RegistrationOut, status_code=status.HTTP_201_CREATED)
async def register_product(
    payload: ProductCreate,
    service: VerificationService = Depends(get_verification_service),
    principal: Principal = Depends(require_roles("manufacturer", "admin")),
):
    result = await service.register(payload.product_id, payload.name)
    token = result.product.qr_hash
    qr_code = await asyncio.to_thread(qr.encode_data_url, token)

    logger.info(
        f"Product registered: {result.product.product_id}",
        extra={'user_id': principal.subject, 'ledger_status': result.ledger_status.value}
    )
    return RegistrationOut(
        product=ProductOut.model_validate(result.product),
        ledger_status=result.ledger_status,
        qr_code=qr_code,
        qr_filename=qr.download_filename(token),
    )


@router.get("", response_model=List[ProductOut])
async def list_products(
    service: VerificationService = Depends(get_verification_service),
    principal: Principal = Depends(require_roles("manufacturer", "admin")),
):
    return await service.list_products()


@router.get(
    "/{product_id}/qr",
    response_class=Response,
    responses={200: {"content": {"image/png": {}}}},
)
async def download_qr(
    product_id: str,
    service: VerificationService = Depends(get_verification_service),
    principal: Principal = Depends(require_roles("manufacturer", "admin")),
):
    product = await service.directory.get_by_identifier(product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    png = await asyncio.to_thread(qr.encode_png, product.qr_hash)
    filename = qr.download_filename(product.qr_hash)
    return Response(
        content=png,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{product_id}/flag", response_model=FlagOut)
async def flag_product(
    product_id: str,
    service: VerificationService = Depends(get_verification_service),
    principal: Principal = Depends(require_roles("admin")),
):
    result = await service.flag_as_fake(product_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")

    logger.warning(
        f"Product flagged as counterfeit: {result.product.product_id}",
        extra={'user_id': principal.subject, 'ledger_status': result.ledger_status.value}
    )
    return FlagOut(product=ProductOut.model_validate(result.product), ledger_status=result.ledger_status)
