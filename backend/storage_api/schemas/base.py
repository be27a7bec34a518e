"""Base schema classes with camelCase alias generation.

Python code stays snake_case; API JSON (ownerId, sizeBytes, ...) is camelCase.
"""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies and plain responses. Accepts and outputs camelCase."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
    }


class CamelORMModel(BaseModel):
    """Responses read straight from SQLAlchemy rows or dataclasses."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }
