# unwind_sync/unwind_api/schemas.py
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator


# --- Records returned by the journal / mistakes / overthinking / todos endpoints ---
class ServerRecord(BaseModel):
    """A server-side entity. Kind-specific fields are kept as extras."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(min_length=1, validation_alias=AliasChoices("_id", "id"))
    created_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("createdAt", "created_at"))
    updated_at: Optional[str] = Field(default=None, validation_alias=AliasChoices("updatedAt", "updated_at"))

    @field_validator("id", "created_at", "updated_at", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        # Some backends send numeric ids
        if value is None or isinstance(value, str):
            return value
        return str(value)

    def to_record_dict(self) -> Dict[str, Any]:
        """Back to the server's own key names (``_id``, ``createdAt``...) plus the extras."""
        data: Dict[str, Any] = dict(self.model_extra or {})
        data["_id"] = self.id
        if self.created_at is not None:
            data["createdAt"] = self.created_at
        if self.updated_at is not None:
            data["updatedAt"] = self.updated_at
        return data


class CreatedRecordResponse(ServerRecord):
    """Body of a successful POST: the created record, carrying at least ``_id`` and ``createdAt``."""
    pass


class UserProfile(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    uid: Optional[str] = Field(default=None, validation_alias=AliasChoices("uid", "_id", "id"))
    email: Optional[str] = None
    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "displayName"))
