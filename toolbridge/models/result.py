"""Canonical normalized result of a tool call."""

from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")

MAX_ITEMS = 12


class Item(BaseModel):
    """One product-like entry extracted from a tool response."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    price: Optional[Union[int, float]] = None
    original_price: Optional[Union[int, float]] = None
    currency: str
    discount: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    url: Optional[str] = None
    rating: Optional[float] = None
    in_stock: Optional[bool] = None


class NormalizedResult(BaseModel):
    """Products list with a count and summary, plus which extractor produced it."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    products: List[Item] = Field(default_factory=list)
    total_count: int = 0
    summary: str = ""
    raw: Optional[Any] = None
    source: str = "none"  # ai | heuristic | none
    degraded: List[str] = Field(default_factory=list, exclude=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass
class Outcome(Generic[T]):
    """Value of a step plus the reasons it fell short, if any."""
    value: T
    degraded: List[str] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)

    @classmethod
    def ok(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def degrade(cls, value: T, reason: str) -> "Outcome[T]":
        return cls(value=value, degraded=[reason])
