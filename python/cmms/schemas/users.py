"""User, auth and preferences schemas."""

import re
from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

HEX_COLOR = r"^#[0-9A-Fa-f]{6}$"


class UserOut(BaseModel):
    """Public view of a user account. Tokens are never included."""

    id: UUID
    email: str
    display_name: str | None = None
    profile_image_url: str | None = None
    watched_folder_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LoginOut(BaseModel):
    """Result of a completed Google sign-in."""

    token: str
    user: UserOut


class UpdateMeRequest(BaseModel):
    """Profile fields a user may change. Omitted fields are left as-is."""

    display_name: str | None = Field(None, max_length=255)
    watched_folder_id: str | None = Field(None, max_length=255)


class PreferencesOut(BaseModel):
    color_palette: list[str]
    auto_assign_colors: bool
    theme: str

    model_config = ConfigDict(from_attributes=True)


class UpdatePreferencesRequest(BaseModel):
    """Replace any subset of the preferences."""

    color_palette: list[str] | None = Field(None, min_length=1, max_length=50)
    auto_assign_colors: bool | None = None
    theme: Literal["light", "dark", "system"] | None = None

    @field_validator("color_palette")
    @classmethod
    def _palette_is_hex(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return value
        bad = [c for c in value if not re.match(HEX_COLOR, c)]
        if bad:
            raise ValueError(f"invalid colors: {', '.join(bad)}")
        # Preserve order, drop duplicates
        return list(dict.fromkeys(c.upper() for c in value))
