from fastapi import APIRouter, Depends

from verisure.auth import Principal, require_roles
from verisure.dependencies import get_verification_service
from verisure.schemas import AnalyticsOut
from verisure.verification import VerificationService

router = APIRouter(tags=["analytics"])


@router.get("/analytics", response_model=AnalyticsOut)
async def analytics(
    service: VerificationService = Depends(get_verification_service),
    principal: Principal = Depends(require_roles("admin")),
):
    """Authentic vs. counterfeit totals plus per-day registration counts."""
    return AnalyticsOut.model_validate(await service.analytics())
