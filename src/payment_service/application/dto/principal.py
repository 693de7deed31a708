from __future__ import annotations

from dataclasses import dataclass, field

from payment_service.domain.value_objects.enums import PrincipalKind


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller identity extracted from JWT."""

    kind: PrincipalKind
    subject: str
    roles: list[str] = field(default_factory=list)

    @property
    def is_internal(self) -> bool:
        return self.kind in (PrincipalKind.SERVICE, PrincipalKind.ADMIN)
