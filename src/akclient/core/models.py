from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServerProfile(BaseModel):
    """A saved server the user can switch between."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    url: str
    added_at: datetime = Field(default_factory=_utcnow, alias="addedAt")


# --- 认证接口 DTO ---

class LoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: Optional[str] = None
    must_change_password: Optional[bool] = None
    totp_required: Optional[bool] = None
    totp_token: Optional[str] = None


class TotpVerifyRequest(BaseModel):
    totp_token: str
    code: str


class TotpCodeRequest(BaseModel):
    code: str


class TotpDisableRequest(BaseModel):
    password: str
    code: str


class TotpSetupResponse(BaseModel):
    secret: str
    qr_code_url: Optional[str] = None


class TotpEnableResponse(BaseModel):
    backup_codes: List[str] = []


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


class SetupStatusResponse(BaseModel):
    setup_required: bool


class ProfileResponse(BaseModel):
    id: str
    username: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_admin: bool = False
    totp_enabled: bool = False


class Identity(BaseModel):
    """Display-only user attributes carried in the access token payload.

    The server re-validates the token on every request; nothing here is used
    to make authorization decisions on the client.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="sub")
    username: str
    email: Optional[str] = None
    is_admin: bool = False
    totp_enabled: bool = False
