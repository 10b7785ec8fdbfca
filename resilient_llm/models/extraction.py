"""Extraction data models.

Defines:
- ParseResult: outcome of an extraction or validation step
- Field rules: a tagged union describing the expected shape of one field
- Schema helpers: building a rule list from plain records (YAML/JSON)
"""

from dataclasses import dataclass
from typing import Annotated, Any, Generic, Iterable, List, Literal, Optional
from typing import Sequence, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

T = TypeVar("T")


@dataclass(frozen=True)
class ParseResult(Generic[T]):
    """Result of turning raw LLM text into a value.

    Either ``data`` (success) or ``error`` (failure) is meaningful, never
    both. Use the ``ok``/``fail`` constructors.
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None

    def __post_init__(self) -> None:
        if self.success and self.error is not None:
            raise ValueError("Successful ParseResult cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("Failed ParseResult requires an error message")
        if not self.success and self.data is not None:
            raise ValueError("Failed ParseResult cannot carry data")

    @classmethod
    def ok(cls, data: T) -> "ParseResult[T]":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ParseResult[T]":
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


ItemType = Literal["string", "number", "boolean", "array", "object"]


class _BaseRule(BaseModel):
    """Fields shared by every rule kind."""

    field: str = Field(..., min_length=1, description="Top-level key to check")
    required: bool = Field(default=True, description="Whether the key must exist")

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)


class StringRule(_BaseRule):
    """A string field with optional length bounds"""

    type: Literal["string"] = "string"
    min_length: Optional[int] = Field(default=None, ge=0, alias="minLength")
    max_length: Optional[int] = Field(default=None, ge=0, alias="maxLength")

    @model_validator(mode="after")
    def check_bounds(self) -> "StringRule":
        _check_ordered(self.min_length, self.max_length, "min_length", "max_length")
        return self


class NumberRule(_BaseRule):
    """A numeric field (int or float, never bool) with optional bounds"""

    type: Literal["number"] = "number"
    min: Optional[float] = None
    max: Optional[float] = None

    @model_validator(mode="after")
    def check_bounds(self) -> "NumberRule":
        _check_ordered(self.min, self.max, "min", "max")
        return self


class BooleanRule(_BaseRule):
    """A boolean field"""

    type: Literal["boolean"] = "boolean"


class ArrayRule(_BaseRule):
    """A list field with optional item type and length bounds"""

    type: Literal["array"] = "array"
    item_type: Optional[ItemType] = Field(default=None, alias="arrayItemType")
    min_length: Optional[int] = Field(default=None, ge=0, alias="minLength")
    max_length: Optional[int] = Field(default=None, ge=0, alias="maxLength")

    @model_validator(mode="after")
    def check_bounds(self) -> "ArrayRule":
        _check_ordered(self.min_length, self.max_length, "min_length", "max_length")
        return self


class ObjectRule(_BaseRule):
    """A nested mapping field"""

    type: Literal["object"] = "object"


FieldRule = Annotated[
    Union[StringRule, NumberRule, BooleanRule, ArrayRule, ObjectRule],
    Field(discriminator="type"),
]

# A schema is an ordered collection of field rules, declared per call site
Schema = Sequence[FieldRule]

_schema_adapter: TypeAdapter[List[FieldRule]] = TypeAdapter(List[FieldRule])


def parse_schema(records: Iterable[dict[str, Any]]) -> List[FieldRule]:
    """Build a schema from plain records.

    Accepts both snake_case and camelCase constraint names
    (``min_length``/``minLength``, ``item_type``/``arrayItemType``).

    Raises:
        pydantic.ValidationError: On unknown rule types or constraints
            that do not apply to the rule's kind.
    """
    return _schema_adapter.validate_python(list(records))


def _check_ordered(
    low: Optional[float], high: Optional[float], low_name: str, high_name: str
) -> None:
    if low is not None and high is not None and low > high:
        raise ValueError(f"{low_name} ({low}) must not exceed {high_name} ({high})")
