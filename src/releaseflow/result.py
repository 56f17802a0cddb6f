"""Result type for releaseflow stages."""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, PrivateAttr

T = TypeVar("T")


class Result(BaseModel, Generic[T]):
    """
    Outcome of a single stage body.

    The error taxonomy is binary: a stage either succeeded or failed.
    Use Ok(value) or Err(message) to construct results.
    """

    status: Literal["success", "failure"] = "success"
    error: str | None = None
    traceback: str | None = None
    _value: T | None = PrivateAttr(default=None)
    _outputs: Mapping[str, str] = PrivateAttr(default_factory=lambda: MappingProxyType({}))

    model_config = {"frozen": True}

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def failed(self) -> bool:
        return self.status == "failure"

    @property
    def outputs(self) -> Mapping[str, str]:
        """Named outputs published by the stage (read-only)."""
        return self._outputs

    def value(self) -> T:
        """
        Get the result value.

        Raises RuntimeError if the result is a failure.
        """
        if self.failed:
            raise RuntimeError(f"Attempted to get value from a failed result: {self.error}")
        return self._value  # type: ignore[return-value]

    def value_or(self, default: T) -> T:
        if self.ok and self._value is not None:
            return self._value
        return default

    def with_outputs(self, outputs: Mapping[str, str]) -> Result[T]:
        """Return this result with a frozen copy of `outputs` attached."""
        object.__setattr__(self, "_outputs", MappingProxyType(dict(outputs)))
        return self


def Ok(value: T) -> Result[T]:
    """Create a successful result with the given value."""
    result = Result[T](status="success")
    object.__setattr__(result, "_value", value)
    return result


def Err(error: str, *, traceback: str | None = None) -> Result[Any]:
    """Create a failed result with an error message."""
    return Result(status="failure", error=error, traceback=traceback)
