from fastapi import Request

from verisure.verification import VerificationService


def get_verification_service(request: Request) -> VerificationService:
    return request.app.state.verification
