# app/schemas/outcomes.py
"""
Result variants returned by the scheduling services.

Routers handle each variant explicitly instead of catching exceptions:

    outcome = await service.get_available_slots(...)
    if isinstance(outcome, Ok): ...
    elif isinstance(outcome, Conflict): ...
"""
from dataclasses import dataclass, field
from typing import Dict, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Conflict:
    message: str


@dataclass(frozen=True)
class ValidationFailed:
    fields: Dict[str, str] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return "; ".join(f"{name}: {msg}" for name, msg in self.fields.items())


@dataclass(frozen=True)
class NotFound:
    message: str


@dataclass(frozen=True)
class UpstreamUnavailable:
    message: str
    retryable: bool = True
    retry_after_seconds: int = 30


Outcome = Union[Ok, Conflict, ValidationFailed, NotFound, UpstreamUnavailable]
