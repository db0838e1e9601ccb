from datetime import datetime
from typing import FrozenSet, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from authz_records.exceptions import DecodeError

SELECTOR_FIELDS = ("user_id", "resource_id", "resource_type", "role")


# --- Inbound ---
class AuthorizationInput(BaseModel):
    """A partially populated record as sent by a caller.

    Empty strings mean "unconstrained"; ``id`` of 0 is the same as no id.
    """
    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = Field(default=None, ge=0)
    user_id: str = ""
    resource_id: str = ""
    resource_type: str = ""
    role: str = ""
    include_deleted: bool = False

    @field_validator("user_id", "resource_id", "resource_type", "role", mode="before")
    @classmethod
    def _blank_to_empty(cls, value):
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def has_id(self) -> bool:
        return bool(self.id)

    def populated(self) -> FrozenSet[str]:
        """Names of the selector fields carrying a value."""
        return frozenset(name for name in SELECTOR_FIELDS if getattr(self, name))


def decode_input(data: Union[str, bytes, None]) -> AuthorizationInput:
    if data is None or not data.strip():
        raise DecodeError("Empty payload", details={"hint": "send {} to match every record"})
    try:
        return AuthorizationInput.model_validate_json(data)
    except ValidationError as e:
        raise DecodeError(
            "Invalid input",
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e


# --- Outbound ---
class AuthorizationRead(BaseModel):
    id: int
    user_id: str
    resource_id: str
    resource_type: str
    role: str
    created_at: datetime
    updated_at: datetime
    deleted_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)


class DeleteStatus(BaseModel):
    status: str = "deleted"


# --- Transport ---
class RequestEnvelope(BaseModel):
    """What a caller pushes onto a subject queue."""
    reply_to: str = Field(min_length=1)
    data: str = ""
