"""Three-state values for fields where "absent" and "null" mean different things.

Keep - the field was omitted: leave the current value alone (for a basis: no check)
Clear - the field was explicitly null: clear it (for a basis: nothing may exist)
SetTo - the field carried a value: set it (for a basis: the current blob must match)

Pydantic fields declared with `TriState` accept the raw JSON forms (missing,
null, value) and convert them, so "omitted" can never silently turn into
"null" further down.
"""
from dataclasses import dataclass
from typing import Annotated, Any, Union

from pydantic import BeforeValidator


@dataclass(frozen=True)
class Keep:
    pass


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class SetTo:
    value: Any


KEEP = Keep()
CLEAR = Clear()

Change = Union[Keep, Clear, SetTo]


def to_change(value: Any) -> Change:
    if isinstance(value, (Keep, Clear, SetTo)):
        return value
    if value is None:
        return CLEAR
    return SetTo(value)


def expected_value(change: Change) -> Any:
    """The value a basis expects to find: None for Clear, the value for SetTo."""
    if isinstance(change, SetTo):
        return change.value
    return None


TriState = Annotated[Change, BeforeValidator(to_change)]
