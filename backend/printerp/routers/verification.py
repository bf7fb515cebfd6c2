"""Verification code routes used by the signup and login wizards.

Route overview:
  POST /send     send a code to an email or phone
  POST /resend   same as /send; supersedes any outstanding code
  POST /verify   check a code; failures come back as data, not errors
"""

from fastapi import APIRouter, Depends

from printerp.auth.verification import VerificationService
from printerp.dependencies import get_verification_service
from printerp.schemas.verification import CodeRequest, CodeSent, CodeVerify, VerificationOut

router = APIRouter()


def _sent(service: VerificationService, record, message: str) -> CodeSent:
    return CodeSent(
        message=message,
        target=record.target,
        purpose=record.purpose,
        expires_at=record.expires_at,
        dev_code=record.code if service.dispatcher.dev_mode else None,
    )


@router.post("/send", response_model=CodeSent)
async def send_code(
    body: CodeRequest,
    service: VerificationService = Depends(get_verification_service),
):
    record = await service.issue_code(body.target, body.purpose)
    return _sent(service, record, "Verification code sent")


@router.post("/resend", response_model=CodeSent)
async def resend_code(
    body: CodeRequest,
    service: VerificationService = Depends(get_verification_service),
):
    record = await service.resend_code(body.target, body.purpose)
    return _sent(service, record, "A new verification code has been sent")


@router.post("/verify", response_model=VerificationOut)
async def verify_code(
    body: CodeVerify,
    service: VerificationService = Depends(get_verification_service),
):
    result = await service.verify_code(body.target, body.purpose, body.code)
    return VerificationOut(
        verified=result.ok,
        reason=result.reason,
        can_resend=result.can_resend,
    )
