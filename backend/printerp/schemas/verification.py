import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from printerp.schemas.validators import normalize_phone, validate_email


class VerificationPurpose(str, enum.Enum):
    SIGNUP_EMAIL = "signup-email"
    SIGNUP_PHONE = "signup-phone"
    LOGIN_EMAIL = "login-email"
    LOGIN_PHONE = "login-phone"

    @property
    def channel(self) -> str:
        """"email" or "phone": which kind of target the purpose accepts."""
        return "email" if self.value.endswith("email") else "phone"


class RejectReason(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"   # nothing outstanding: resend
    EXPIRED = "EXPIRED"       # resend
    MISMATCH = "MISMATCH"     # re-enter the code


def normalize_target(target: str, purpose: VerificationPurpose) -> str:
    """Validate a target against the purpose's channel. Raises ValueError."""
    if purpose.channel == "email":
        return validate_email(target)
    return normalize_phone(target)


class VerificationCode(BaseModel):
    """One issued code. Exactly one of email/phone is set."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    email: str | None = None
    phone: str | None = None
    code: str
    purpose: VerificationPurpose
    consumed: bool = False
    consumed_at: datetime | None = None
    attempts: int = 0
    created_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def _one_target(self):
        if (self.email is None) == (self.phone is None):
            raise ValueError("Exactly one of email or phone must be set")
        return self

    @property
    def target(self) -> str:
        return self.email if self.email is not None else self.phone

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


# ── API bodies ───────────────────────────────────────────────


class CodeRequest(BaseModel):
    """Ask for a code to be sent (or re-sent) to an email or phone."""
    target: str
    purpose: VerificationPurpose

    @model_validator(mode="after")
    def _normalize(self):
        self.target = normalize_target(self.target, self.purpose)
        return self


class CodeVerify(CodeRequest):
    code: str = Field(..., min_length=1, max_length=12)


class CodeSent(BaseModel):
    message: str
    target: str
    purpose: VerificationPurpose
    expires_at: datetime
    dev_code: str | None = None  # only when no dispatch credentials are configured


class VerificationOut(BaseModel):
    verified: bool
    reason: RejectReason | None = None
    can_resend: bool = False
