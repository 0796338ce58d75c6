"""Principal references shared by OTP, token, and session storage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal
from uuid import UUID

from sqlalchemy import ColumnElement

PrincipalKind = Literal["user", "admin"]


@dataclass(frozen=True)
class PrincipalRef:
    """Tagged reference to either a user or an admin row."""

    kind: PrincipalKind
    id: UUID

    @classmethod
    def user(cls, principal_id: UUID) -> PrincipalRef:
        return cls(kind="user", id=principal_id)

    @classmethod
    def admin(cls, principal_id: UUID) -> PrincipalRef:
        return cls(kind="admin", id=principal_id)

    @classmethod
    def of(cls, row: Any) -> PrincipalRef:
        """Build a reference from any row carrying ``user_id``/``admin_id`` columns."""
        if getattr(row, "admin_id", None) is not None:
            return cls.admin(row.admin_id)
        if getattr(row, "user_id", None) is not None:
            return cls.user(row.user_id)
        raise ValueError("Row has no owning principal.")

    @property
    def owner_column(self) -> str:
        """Name of the foreign-key column that stores this principal."""
        return "admin_id" if self.kind == "admin" else "user_id"

    def owner_fields(self) -> dict[str, UUID | None]:
        """Column values for both owner FKs, exactly one of them set."""
        return {
            "user_id": self.id if self.kind == "user" else None,
            "admin_id": self.id if self.kind == "admin" else None,
        }

    def owner_filter(self, model: Any) -> ColumnElement[bool]:
        """SQL predicate matching rows owned by this principal."""
        return getattr(model, self.owner_column) == self.id

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"
