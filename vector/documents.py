"""Value types passed to and returned from vector stores."""

from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Vector(BaseModel):
    """An embedding as an immutable sequence of floats."""

    model_config = ConfigDict(frozen=True)

    data: Tuple[float, ...]

    def __init__(self, data, **kwargs):
        super().__init__(data=tuple(data), **kwargs)

    @property
    def dimensions(self) -> int:
        return len(self.data)

    def to_list(self) -> List[float]:
        return [float(value) for value in self.data]


class VectorDocument(BaseModel):
    """A document identified by a caller-assigned id, with its embedding."""

    model_config = ConfigDict(frozen=True)

    id: str
    vector: Vector
    metadata: Dict[str, Any] = Field(default_factory=dict)
    # Distance reported by the server, only set on query results
    score: Optional[float] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        if isinstance(value, UUID):
            return str(value)
        return value

    @field_validator("vector", mode="before")
    @classmethod
    def _coerce_vector(cls, value):
        if isinstance(value, (Vector, dict)):
            return value
        return Vector(value)
