"""
Common schemas and utilities shared across all services.
"""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base model serialized with camelCase keys (the browser client's wire format).

    Fields are declared in snake_case and can be populated by either name.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    detail: str
    error_code: str | None = None
