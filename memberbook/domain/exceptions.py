"""Domain Exceptions"""
from typing import Optional


class DomainError(Exception):
    """Base class for every error raised by the rule engine"""


class ValidationError(DomainError):
    """Malformed or out-of-range argument, including wrong-typed value-object fields"""


class ConfigurationError(ValidationError):
    """Invalid specification, policy or settings configuration"""


class IllegalTransitionError(DomainError):
    """Reservation state machine guard violation"""

    def __init__(self, current, target, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(
            message
            or f"Cannot transition reservation from {_tag(current)} to {_tag(target)}"
        )


class CurrencyMismatchError(DomainError):
    """Arithmetic or comparison across different currencies"""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Currency mismatch: {expected} vs {actual}")


def _tag(status) -> str:
    return getattr(status, "value", None) or str(status)
