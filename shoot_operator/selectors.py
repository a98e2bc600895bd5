"""
Composable label / field selectors.

Selectors are plain immutable values: build them once, combine them with
`&`, render them with str() for the API server, or evaluate them in memory
with matches().
"""
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple

from shoot_operator.constants import (
    LABEL_NO_CLEANUP,
    LABEL_ROLE,
    PROTECTED_NAMESPACES,
    ROLE_CONTROL_PLANE,
    ROLE_LOGGING,
    ROLE_MONITORING,
    ROLE_SYSTEM_COMPONENT,
)

EQUALS = "="
NOT_EQUALS = "!="
IN = "in"
NOT_IN = "notin"


@dataclass(frozen=True)
class Requirement:
    key: str
    operator: str
    values: Tuple[str, ...]

    def __post_init__(self):
        if self.operator not in (EQUALS, NOT_EQUALS, IN, NOT_IN):
            raise ValueError(f"unsupported selector operator {self.operator!r}")
        if self.operator in (EQUALS, NOT_EQUALS) and len(self.values) != 1:
            raise ValueError(f"operator {self.operator!r} takes exactly one value")
        if not self.values:
            raise ValueError(f"requirement on {self.key!r} has no values")

    def matches(self, fields: Mapping[str, str]) -> bool:
        present = self.key in fields
        value = fields.get(self.key)
        if self.operator == EQUALS:
            return present and value == self.values[0]
        if self.operator == IN:
            return present and value in self.values
        if self.operator == NOT_EQUALS:
            return not present or value != self.values[0]
        return not present or value not in self.values

    def __str__(self) -> str:
        if self.operator in (EQUALS, NOT_EQUALS):
            return f"{self.key}{self.operator}{self.values[0]}"
        return f"{self.key} {self.operator} ({','.join(sorted(self.values))})"


@dataclass(frozen=True)
class Selector:
    """Conjunction of requirements. The empty selector matches everything."""
    requirements: Tuple[Requirement, ...] = ()

    def __and__(self, other: "Selector") -> "Selector":
        merged = list(self.requirements)
        for r in other.requirements:
            if r not in merged:
                merged.append(r)
        return Selector(tuple(merged))

    def matches(self, fields: Optional[Mapping[str, str]]) -> bool:
        fields = fields or {}
        return all(r.matches(fields) for r in self.requirements)

    def __str__(self) -> str:
        return ",".join(str(r) for r in self.requirements)

    def __bool__(self) -> bool:
        return bool(self.requirements)


def requirement(key: str, operator: str, *values: str) -> Selector:
    return Selector((Requirement(key, operator, tuple(values)),))


def role_selector(*roles: str) -> Selector:
    if len(roles) == 1:
        return requirement(LABEL_ROLE, EQUALS, roles[0])
    return requirement(LABEL_ROLE, IN, *roles)


def names_excluded(names: Iterable[str]) -> Selector:
    """Field selector excluding objects by metadata.name."""
    return Selector(tuple(Requirement("metadata.name", NOT_EQUALS, (n,)) for n in names))


EVERYTHING = Selector()

NOT_SYSTEM_COMPONENT = requirement(LABEL_ROLE, NOT_EQUALS, ROLE_SYSTEM_COMPONENT)
NO_CLEANUP_PREVENTION = requirement(LABEL_NO_CLEANUP, NOT_EQUALS, "true")

# Always ANDed into every cleanup stage.
CLEANUP_EXCLUSIONS = NOT_SYSTEM_COMPONENT & NO_CLEANUP_PREVENTION

CONTROL_PLANE = role_selector(ROLE_CONTROL_PLANE)
MONITORING = role_selector(ROLE_MONITORING)
LOGGING = role_selector(ROLE_LOGGING)

UNPROTECTED_NAMESPACES = names_excluded(PROTECTED_NAMESPACES)
