from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class PlanError(Exception):
    """Base error envelope. Prefer returning/printing these rather than raising raw exceptions."""

    code: str
    message: str
    file: Optional[str] = None
    path: Optional[str] = None
    node_id: Optional[str] = None

    def __str__(self) -> str:
        parts: list[str] = []
        if self.file:
            parts.append(self.file)
        if self.path:
            parts.append(self.path)
        elif self.node_id:
            parts.append(f"nodes[{self.node_id}]")
        loc = ":".join(parts) if parts else "<plan>"
        return f"{loc}: {self.code}: {self.message}"


class PlanLoadError(PlanError):
    pass


class PlanValidationError(PlanError):
    pass


class IntegrityViolation(PlanError):
    """A planning-tree invariant breach; `code` is the violation kind."""


class InvalidInput(PlanError):
    """Malformed or missing input at the phasing boundary."""


class RollupRefused(Exception):
    """Roll-up was asked to run over a tree that fails validation."""

    def __init__(self, violations: list[IntegrityViolation]) -> None:
        super().__init__(f"rollup refused: {len(violations)} integrity violation(s)")
        self.violations = list(violations)
