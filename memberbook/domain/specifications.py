"""Composable admission predicates over a RequestContext.

Every specification is a frozen pydantic model, so two specifications are
equal when they have the same type and the same configuration (for the
combinators: the same children in the same order). Instances can be shared
freely between threads.

Combinators are built with the free functions :func:`all_of`, :func:`any_of`
and :func:`negate` rather than operators on the leaves.
"""
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from memberbook.domain.context import RequestContext
from memberbook.domain.exceptions import ConfigurationError


class Specification(BaseModel, ABC):
    """Boolean admission check with a human-readable description"""

    model_config = ConfigDict(frozen=True)

    @abstractmethod
    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        pass

    @abstractmethod
    def describe(self) -> str:
        pass

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        """Why the context was rejected, or None when it passes"""
        if self.is_satisfied_by(ctx):
            return None
        return f"Requirement not met: {self.describe()}"

    def failure_reasons(self, ctx: RequestContext) -> List[str]:
        """Every rejection reason in the tree, leaves first"""
        reason = self.failure_reason(ctx)
        return [reason] if reason else []

    def __str__(self) -> str:
        return self.describe()


def _check_children(kind: str, children: Any) -> Tuple[Specification, ...]:
    if children is None:
        raise ConfigurationError(f"{kind} requires child specifications")
    children = tuple(children)
    if len(children) < 2:
        raise ConfigurationError(
            f"{kind} requires at least two child specifications, got {len(children)}"
        )
    for child in children:
        if not isinstance(child, Specification):
            raise ConfigurationError(f"{kind} child is not a specification: {child!r}")
    return children


class AndSpecification(Specification):
    """Satisfied when every child is; all children are always evaluated"""
    children: Tuple[Specification, ...]

    @field_validator("children", mode="before")
    @classmethod
    def _validate_children(cls, v: Any) -> Tuple[Specification, ...]:
        return _check_children("AND", v)

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        results = [child.is_satisfied_by(ctx) for child in self.children]
        return all(results)

    def failed_children(self, ctx: RequestContext) -> List[Specification]:
        return [child for child in self.children if not child.is_satisfied_by(ctx)]

    def satisfied_children(self, ctx: RequestContext) -> List[Specification]:
        return [child for child in self.children if child.is_satisfied_by(ctx)]

    def describe(self) -> str:
        return "(" + " AND ".join(child.describe() for child in self.children) + ")"

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        reasons = self.failure_reasons(ctx)
        return "; ".join(reasons) if reasons else None

    def failure_reasons(self, ctx: RequestContext) -> List[str]:
        reasons: List[str] = []
        for child in self.children:
            reasons.extend(child.failure_reasons(ctx))
        return reasons


class OrSpecification(Specification):
    """Satisfied when at least one child is; all children are always evaluated"""
    children: Tuple[Specification, ...]

    @field_validator("children", mode="before")
    @classmethod
    def _validate_children(cls, v: Any) -> Tuple[Specification, ...]:
        return _check_children("OR", v)

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        results = [child.is_satisfied_by(ctx) for child in self.children]
        return any(results)

    def failed_children(self, ctx: RequestContext) -> List[Specification]:
        return [child for child in self.children if not child.is_satisfied_by(ctx)]

    def satisfied_children(self, ctx: RequestContext) -> List[Specification]:
        return [child for child in self.children if child.is_satisfied_by(ctx)]

    def describe(self) -> str:
        return "(" + " OR ".join(child.describe() for child in self.children) + ")"

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        if self.is_satisfied_by(ctx):
            return None
        reasons: List[str] = []
        for child in self.children:
            reasons.extend(child.failure_reasons(ctx))
        return "None of the alternatives were satisfied: " + " / ".join(reasons)


class NotSpecification(Specification):
    """Inverts a single specification"""
    inner: Specification

    @field_validator("inner", mode="before")
    @classmethod
    def _validate_inner(cls, v: Any) -> Specification:
        if not isinstance(v, Specification):
            raise ConfigurationError(f"NOT requires a specification, got {v!r}")
        return v

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        return not self.inner.is_satisfied_by(ctx)

    def describe(self) -> str:
        return f"NOT {self.inner.describe()}"

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        if self.is_satisfied_by(ctx):
            return None
        return f"Must not satisfy: {self.inner.describe()}"


# ==================== BUILDERS ====================
def all_of(*specs: Specification) -> AndSpecification:
    return AndSpecification(children=specs)


def any_of(*specs: Specification) -> OrSpecification:
    return OrSpecification(children=specs)


def negate(spec: Specification) -> NotSpecification:
    return NotSpecification(inner=spec)
