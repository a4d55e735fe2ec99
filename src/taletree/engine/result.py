from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from taletree.engine.errors import EngineError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a mutating session call: either a value or an engine error.

    Session operations return these instead of raising, so API layers can
    map ``kind`` onto their own error vocabulary.
    """

    value: Optional[T] = None
    error: Optional[EngineError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: EngineError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> str:
        return "ok" if self.error is None else self.error.kind

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]
