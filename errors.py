"""Error taxonomy and the tagged result returned by ledger operations."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class SimulatorError(Exception):
    """Base class for all simulator errors."""


class DataFormatError(SimulatorError):
    """Raw price data could not be turned into a series. The whole load is rejected."""


class StorageError(SimulatorError):
    """A persisted document could not be read or written."""


class ValidationError(SimulatorError):
    """A request was rejected before any state changed."""


class InsufficientFundsError(ValidationError):
    pass


class InsufficientSharesError(ValidationError):
    pass


class InvalidShareAmountError(ValidationError):
    pass


class MissingPriceError(ValidationError):
    pass


class InvalidTradeTypeError(ValidationError):
    pass


class InvalidStartDateError(ValidationError):
    pass


class InvalidStartingCashError(ValidationError):
    pass


class InvalidAdvanceError(ValidationError):
    pass


class GameStateError(SimulatorError):
    """The requested operation is not allowed in the session's current status."""


class NoMoreDataError(SimulatorError):
    """The requested advance would move past the last available trading day."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a ledger operation: either a value or an error, never both."""
    value: Optional[T] = None
    error: Optional[SimulatorError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def message(self) -> str:
        return str(self.error) if self.error is not None else ""

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: SimulatorError) -> "Result[T]":
        return cls(error=error)
