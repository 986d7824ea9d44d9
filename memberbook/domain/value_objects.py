"""Domain Value Objects"""
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from memberbook.domain.enums import ReservationStatus
from memberbook.domain.exceptions import CurrencyMismatchError, ValidationError

CENTS = Decimal("0.01")


def _require_fields(data: Any, owner: str, *names: str) -> Any:
    if isinstance(data, dict):
        missing = [name for name in names if data.get(name) is None]
        if missing:
            raise ValidationError(f"{owner} requires {', '.join(missing)}")
    return data


def _as_domain_error(data: Any, handler: Callable[[Any], Any], owner: str) -> Any:
    """Run pydantic validation, reporting type errors as the domain ValidationError"""
    try:
        return handler(data)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or owner}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid {owner}: {problems}") from exc


def _positive(amount: int, what: str) -> None:
    if amount <= 0:
        raise ValidationError(f"{what} must be positive, got {amount}")


# ==================== MONEY ====================
class Money(BaseModel):
    """Non-negative monetary amount, rounded half-up to two decimals"""
    amount: Decimal
    currency: str

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="wrap")
    @classmethod
    def _wrap_errors(cls, data: Any, handler: Callable[[Any], Any]) -> "Money":
        return _as_domain_error(data, handler, "Money")

    @model_validator(mode="before")
    @classmethod
    def _check_required(cls, data: Any) -> Any:
        return _require_fields(data, "Money", "amount", "currency")

    @field_validator("amount", mode="before")
    @classmethod
    def _normalize_amount(cls, v: Any) -> Decimal:
        if isinstance(v, float):
            v = str(v)
        try:
            value = Decimal(v)
        except (InvalidOperation, TypeError) as exc:
            raise ValidationError(f"Invalid monetary amount: {v!r}") from exc
        if not value.is_finite():
            raise ValidationError(f"Invalid monetary amount: {v!r}")
        value = value.quantize(CENTS, rounding=ROUND_HALF_UP)
        if value < 0:
            raise ValidationError(f"Amount cannot be negative: {value}")
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, v: Any) -> str:
        code = str(v).strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValidationError(f"Invalid currency code: {v!r}")
        return code

    @staticmethod
    def of(amount: Union[int, str, Decimal], currency: str) -> "Money":
        return Money(amount=amount, currency=currency)

    @staticmethod
    def zero(currency: str) -> "Money":
        return Money(amount=Decimal("0"), currency=currency)

    # ==================== ARITHMETIC ====================
    def _check_currency(self, other: "Money") -> None:
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(amount=self.amount + other.amount, currency=self.currency)

    def __sub__(self, other: "Money") -> "Money":
        self._check_currency(other)
        result = self.amount - other.amount
        if result < 0:
            raise ValidationError(f"Subtraction result cannot be negative: {result}")
        return Money(amount=result, currency=self.currency)

    def subtract_floored(self, other: "Money") -> "Money":
        """Subtract, clamping at zero instead of failing"""
        self._check_currency(other)
        return Money(amount=max(self.amount - other.amount, Decimal("0")), currency=self.currency)

    def multiply(self, factor: Union[int, str, Decimal]) -> "Money":
        factor = Decimal(str(factor))
        if factor < 0:
            raise ValidationError(f"Multiplier cannot be negative: {factor}")
        return Money(amount=self.amount * factor, currency=self.currency)

    def divide(self, divisor: Union[int, str, Decimal]) -> "Money":
        divisor = Decimal(str(divisor))
        if divisor <= 0:
            raise ValidationError(f"Divisor must be positive: {divisor}")
        return Money(amount=self.amount / divisor, currency=self.currency)

    def min(self, other: "Money") -> "Money":
        self._check_currency(other)
        return self if self.amount <= other.amount else other

    # ==================== COMPARISON ====================
    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount < other.amount

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount <= other.amount

    def __gt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount > other.amount

    def __ge__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


# ==================== TEMPORAL RANGE ====================
class TemporalRange(BaseModel):
    """Day-granularity date range; both boundaries are inclusive"""
    start: date
    end: date

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="wrap")
    @classmethod
    def _wrap_errors(cls, data: Any, handler: Callable[[Any], Any]) -> "TemporalRange":
        return _as_domain_error(data, handler, "TemporalRange")

    @model_validator(mode="before")
    @classmethod
    def _check_required(cls, data: Any) -> Any:
        return _require_fields(data, "TemporalRange", "start", "end")

    @model_validator(mode="after")
    def _check_order(self) -> "TemporalRange":
        if self.start > self.end:
            raise ValidationError(
                f"Start date must not be after end date: {self.start} > {self.end}"
            )
        return self

    @staticmethod
    def of(start: date, end: date) -> "TemporalRange":
        return TemporalRange(start=start, end=end)

    @staticmethod
    def single_day(day: date) -> "TemporalRange":
        return TemporalRange(start=day, end=day)

    @staticmethod
    def starting(start: date, days: int) -> "TemporalRange":
        """Range of `days` days beginning on `start`"""
        _positive(days, "Number of days")
        return TemporalRange(start=start, end=start + timedelta(days=days - 1))

    # ==================== QUERIES ====================
    def contains(self, other: Union[date, "TemporalRange"]) -> bool:
        if isinstance(other, TemporalRange):
            return self.start <= other.start and other.end <= self.end
        return self.start <= other <= self.end

    def is_contained_by(self, other: "TemporalRange") -> bool:
        return other.contains(self)

    def overlaps(self, other: "TemporalRange") -> bool:
        """Closed intervals: sharing a boundary day counts as overlap"""
        return self.start <= other.end and other.start <= self.end

    def is_adjacent(self, other: "TemporalRange") -> bool:
        one_day = timedelta(days=1)
        return self.end + one_day == other.start or other.end + one_day == self.start

    @property
    def days(self) -> int:
        """Inclusive length in days"""
        return (self.end - self.start).days + 1

    def is_single_day(self) -> bool:
        return self.start == self.end

    def is_past(self, today: date) -> bool:
        return self.end < today

    def is_future(self, today: date) -> bool:
        return self.start > today

    def is_current(self, today: date) -> bool:
        return self.contains(today)

    def days_until_end(self, today: date) -> int:
        return max((self.end - today).days, 0)

    # ==================== DERIVATION ====================
    def extend(self, days: int) -> "TemporalRange":
        _positive(days, "Extension")
        return TemporalRange(start=self.start, end=self.end + timedelta(days=days))

    def shorten(self, days: int) -> "TemporalRange":
        _positive(days, "Shortening")
        new_end = self.end - timedelta(days=days)
        if new_end < self.start:
            raise ValidationError(
                f"Cannot shorten by {days} days: end would precede start {self.start}"
            )
        return TemporalRange(start=self.start, end=new_end)

    def with_start(self, start: date) -> "TemporalRange":
        return TemporalRange(start=start, end=self.end)

    def with_end(self, end: date) -> "TemporalRange":
        return TemporalRange(start=self.start, end=end)

    def __str__(self) -> str:
        return f"{self.start} ~ {self.end}"


# ==================== TIME WINDOW ====================
class TimeWindow(BaseModel):
    """Instant-granularity window within one calendar day; boundaries are open for overlap"""
    start: datetime
    end: datetime

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="wrap")
    @classmethod
    def _wrap_errors(cls, data: Any, handler: Callable[[Any], Any]) -> "TimeWindow":
        return _as_domain_error(data, handler, "TimeWindow")

    @model_validator(mode="before")
    @classmethod
    def _check_required(cls, data: Any) -> Any:
        return _require_fields(data, "TimeWindow", "start", "end")

    @model_validator(mode="after")
    def _check_window(self) -> "TimeWindow":
        if self.start >= self.end:
            raise ValidationError(
                f"Window start must be strictly before end: {self.start} >= {self.end}"
            )
        if self.start.date() != self.end.date():
            raise ValidationError("Window must start and end on the same calendar day")
        return self

    @staticmethod
    def of(start: datetime, end: datetime) -> "TimeWindow":
        return TimeWindow(start=start, end=end)

    @staticmethod
    def of_duration(start: datetime, minutes: int) -> "TimeWindow":
        _positive(minutes, "Duration")
        return TimeWindow(start=start, end=start + timedelta(minutes=minutes))

    @staticmethod
    def one_hour(start: datetime) -> "TimeWindow":
        return TimeWindow.of_duration(start, 60)

    @staticmethod
    def on(day: date, start: time, end: time) -> "TimeWindow":
        return TimeWindow(start=datetime.combine(day, start), end=datetime.combine(day, end))

    # ==================== QUERIES ====================
    @property
    def day(self) -> date:
        return self.start.date()

    @property
    def duration_minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)

    @property
    def duration_hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600

    def contains(self, other: Union[datetime, "TimeWindow"]) -> bool:
        """Instant membership is half-open [start, end); windows must fit entirely"""
        if isinstance(other, TimeWindow):
            return self.start <= other.start and other.end <= self.end
        return self.start <= other < self.end

    def overlaps(self, other: "TimeWindow") -> bool:
        """Open boundaries: windows that only touch do not overlap"""
        return self.start < other.end and self.end > other.start

    def is_adjacent(self, other: "TimeWindow") -> bool:
        return self.end == other.start or other.end == self.start

    def is_before(self, other: "TimeWindow") -> bool:
        return self.end <= other.start

    def is_after(self, other: "TimeWindow") -> bool:
        return self.start >= other.end

    def is_past(self, now: datetime) -> bool:
        return self.end <= now

    def is_future(self, now: datetime) -> bool:
        return self.start > now

    def is_current(self, now: datetime) -> bool:
        return self.contains(now)

    # ==================== DERIVATION ====================
    def move_by(self, minutes: int) -> "TimeWindow":
        delta = timedelta(minutes=minutes)
        return TimeWindow(start=self.start + delta, end=self.end + delta)

    def extend(self, minutes: int) -> "TimeWindow":
        _positive(minutes, "Extension")
        return TimeWindow(start=self.start, end=self.end + timedelta(minutes=minutes))

    def shorten(self, minutes: int) -> "TimeWindow":
        _positive(minutes, "Shortening")
        new_end = self.end - timedelta(minutes=minutes)
        if new_end <= self.start:
            raise ValidationError(
                f"Cannot shorten by {minutes} minutes: window would be empty or inverted"
            )
        return TimeWindow(start=self.start, end=new_end)

    def __str__(self) -> str:
        return f"{self.start:%Y-%m-%d %H:%M}-{self.end:%H:%M}"


# ==================== STATUS CHANGE ====================
class StatusChange(BaseModel):
    """One entry of a reservation's append-only status history"""
    from_status: Optional[ReservationStatus] = None
    to_status: ReservationStatus
    changed_at: datetime
    reason: str

    model_config = ConfigDict(frozen=True)

    def describe(self) -> str:
        origin = self.from_status.value if self.from_status else "NONE"
        return f"{origin} -> {self.to_status.value} at {self.changed_at:%Y-%m-%d %H:%M} ({self.reason})"
