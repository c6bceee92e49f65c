"""
Base schemas shared by request and response models.
"""

from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):
    """Response base: enums serialize as their values."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True)


class StrictRequestModel(BaseModel):
    """Request base: forbid extras, validate defaults and assignments."""

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        validate_assignment=True,
    )
