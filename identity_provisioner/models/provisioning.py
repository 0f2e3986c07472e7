from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from ..errors import WarningKind


class ProvisioningRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_name: str
    user_principal_name: str
    mail_nickname: str
    department: Optional[str] = None
    job_title: Optional[str] = None
    group_ids: List[str] = Field(default_factory=list)
    license_sku_id: Optional[str] = None
    send_notification: bool = False

    @field_validator("display_name", "user_principal_name", "mail_nickname")
    @classmethod
    def _require_value(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @field_validator("department", "job_title", "license_sku_id")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("group_ids", mode="before")
    @classmethod
    def _default_groups(cls, value: Any) -> Any:
        return [] if value is None else value


class AccountProfile(BaseModel):
    """Fields submitted to the directory when creating the account."""

    display_name: str
    user_principal_name: str
    mail_nickname: str
    department: Optional[str] = None
    job_title: Optional[str] = None
    usage_location: Optional[str] = None
    password: SecretStr
    force_change_password_next_sign_in: bool = True
    account_enabled: bool = True

    @classmethod
    def from_request(
        cls,
        request: ProvisioningRequest,
        password: str,
        usage_location: Optional[str] = None,
    ) -> "AccountProfile":
        return cls(
            display_name=request.display_name,
            user_principal_name=request.user_principal_name,
            mail_nickname=request.mail_nickname,
            department=request.department,
            job_title=request.job_title,
            usage_location=usage_location,
            password=SecretStr(password),
        )


class AccountRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: str
    display_name: str
    user_principal_name: str
    mail_nickname: str
    department: Optional[str] = None
    job_title: Optional[str] = None


class ProvisioningWarning(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: WarningKind
    target: Optional[str] = None
    message: str


class StepStatus(str, Enum):
    OK = "ok"
    FATAL = "fatal"
    WARNING = "warning"


class StepOutcome(BaseModel):
    """Tagged result of a single workflow step."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    step: str
    status: StepStatus
    value: Any = None
    error: Optional[str] = None
    warning: Optional[ProvisioningWarning] = None

    @classmethod
    def ok(cls, step: str, value: Any = None) -> "StepOutcome":
        return cls(step=step, status=StepStatus.OK, value=value)

    @classmethod
    def fatal(cls, step: str, error: str) -> "StepOutcome":
        return cls(step=step, status=StepStatus.FATAL, error=error)

    @classmethod
    def warn(cls, step: str, warning: ProvisioningWarning) -> "StepOutcome":
        return cls(step=step, status=StepStatus.WARNING, error=warning.message, warning=warning)

    @property
    def is_fatal(self) -> bool:
        return self.status == StepStatus.FATAL


class ProvisioningResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    account_id: Optional[str] = None
    user_principal_name: str
    display_name: str
    credential: Optional[SecretStr] = None
    message: str
    error: Optional[str] = None
    warnings: List[ProvisioningWarning] = Field(default_factory=list)
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_output(self, reveal_credential: bool = False) -> Dict[str, Any]:
        """Return the result in the runbook output shape."""
        password: Optional[str] = None
        if self.credential is not None:
            password = self.credential.get_secret_value() if reveal_credential else "**********"

        return {
            "success": self.success,
            "userId": self.account_id,
            "upn": self.user_principal_name,
            "displayName": self.display_name,
            "password": password,
            "message": self.message,
            "error": self.error,
            "warnings": [
                {"type": w.kind.value, "target": w.target, "message": w.message}
                for w in self.warnings
            ],
        }
