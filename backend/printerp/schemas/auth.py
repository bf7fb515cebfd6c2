import time
from typing import Any

from pydantic import BaseModel, EmailStr, Field, ValidationError, field_validator, model_validator

from printerp.schemas.validators import normalize_phone, validate_password


# ── User settings ────────────────────────────────────────────

class AutoLogout(BaseModel):
    enabled: bool = False
    minutes: int = Field(30, ge=1, le=24 * 60)


class UserSettings(BaseModel):
    dark_mode: bool = False
    theme_color: str = "#1976d2"
    compact_view: bool = False
    email_notifications: bool = True
    app_notifications: bool = True
    language: str = "en"
    two_factor_auth: bool = False
    auto_logout: AutoLogout = AutoLogout()


# ── User profile (from the provider's user_metadata) ────────

def _text(value: Any, default: str = "") -> str:
    """Metadata is free-form JSON; keep scalars as text and drop the rest."""
    if value is None or isinstance(value, (dict, list)):
        return default
    return str(value) or default


class UserProfile(BaseModel):
    id: str
    email: str | None = None
    first_name: str = ""
    last_name: str = ""
    role: str = "staff"
    phone: str = ""
    job_title: str = ""
    settings: UserSettings = UserSettings()

    @classmethod
    def from_provider_user(cls, user: dict[str, Any]) -> "UserProfile":
        """Build a profile from a GoTrue user object.

        Metadata keys use the front-end's camelCase spelling.  Any value can
        be stored there, so scalars are read as text and malformed settings
        fall back to defaults instead of failing the whole profile.
        """
        meta = user.get("user_metadata")
        if not isinstance(meta, dict):
            meta = {}
        try:
            settings = UserSettings.model_validate(meta.get("settings") or {})
        except ValidationError:
            settings = UserSettings()
        return cls(
            id=_text(user.get("id")),
            email=_text(user.get("email")) or None,
            first_name=_text(meta.get("firstName")),
            last_name=_text(meta.get("lastName")),
            role=_text(meta.get("role"), "staff"),
            phone=_text(meta.get("phone")) or _text(user.get("phone")),
            job_title=_text(meta.get("jobTitle")),
            settings=settings,
        )


# ── Session ──────────────────────────────────────────────────

class Session(BaseModel):
    access_token: str = Field(..., min_length=1)
    refresh_token: str = ""
    token_type: str = "bearer"
    expires_in: int | None = None
    expires_at: int | None = None  # epoch seconds
    user: dict[str, Any] = {}

    def is_expired(self, now: float | None = None, leeway: int = 10) -> bool:
        if self.expires_at is None:
            return False
        return (now or time.time()) >= self.expires_at - leeway


class SessionOut(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: int | None = None
    user: UserProfile

    @classmethod
    def from_session(cls, session: Session) -> "SessionOut":
        return cls(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            token_type=session.token_type,
            expires_at=session.expires_at,
            user=UserProfile.from_provider_user(session.user),
        )


# ── Login / registration ────────────────────────────────────

class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    """Final step of the signup wizard; email and phone must already be verified."""
    email: EmailStr
    phone: str
    password: str
    confirm_password: str
    first_name: str = ""
    last_name: str = ""

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        return normalize_phone(v)

    @field_validator("password")
    @classmethod
    def _password(cls, v: str) -> str:
        return validate_password(v)

    @model_validator(mode="after")
    def _passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self

    def metadata(self) -> dict[str, Any]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "phone": self.phone,
            "role": "staff",
        }


class RegisterOut(BaseModel):
    message: str
    session: SessionOut | None = None


class RefreshRequest(BaseModel):
    refresh_token: str


class PasswordResetRequest(BaseModel):
    email: EmailStr
