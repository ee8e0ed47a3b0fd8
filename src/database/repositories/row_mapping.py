"""Conversions between domain models and table rows."""

from enum import Enum
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import Table

M = TypeVar("M", bound=BaseModel)


def to_row(model: BaseModel, table: Table, **overrides: Any) -> Dict[str, Any]:
    """Column values for ``table`` taken from ``model``; enums become their values."""
    data = model.model_dump()
    data.update(overrides)
    row = {}
    for column in table.columns:
        if column.name not in data:
            continue
        value = data[column.name]
        if isinstance(value, Enum):
            value = value.value
        row[column.name] = value
    return row


def from_row(model_class: Type[M], row) -> M:
    """Build a domain model from a result row."""
    return model_class.model_validate(dict(row._mapping))
