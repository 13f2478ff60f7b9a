"""Shared Pydantic base models and utilities."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ModSyncBase(BaseModel):
    """Base model for all ModSync schemas.

    Fields are snake_case in Python and camelCase on the wire, which is what
    the dashboard expects.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---------- Generic response envelopes ----------


class SuccessResponse(ModSyncBase):
    success: bool = True
    message: str


class ErrorResponse(ModSyncBase):
    success: bool = False
    error: str
