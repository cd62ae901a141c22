"""Column type helpers shared by the models."""
from enum import Enum as PyEnum
from typing import Type

from sqlalchemy import Enum


def enum_column_type(enum_cls: Type[PyEnum]) -> Enum:
    """Store a str-Enum by value in a VARCHAR column (no native DB enum)."""
    return Enum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
