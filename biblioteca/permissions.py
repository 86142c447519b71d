from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Iterable

USER = "USER"
ADMIN = "ADMIN"
MODIFY_BOOKS = "MODIFY_BOOKS"
MODIFY_USERS = "MODIFY_USERS"
DISABLE_USERS = "DISABLE_USERS"

# Campos de información del libro: tocarlos exige MODIFY_BOOKS
BOOK_INFO_FIELDS = frozenset(
    {"title", "author", "description", "category", "publisher", "published_at"}
)
# Campos operativos: no exigen permiso extra
BOOK_OPERATIONAL_FIELDS = frozenset({"stock", "enabled", "reservations"})


@dataclass(frozen=True)
class Identity:
    """Quién llama: id verificado + roles (etiquetas de capacidad)."""

    subject_id: int
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def of(cls, subject_id: int, roles: Iterable[str]) -> "Identity":
        return cls(subject_id=subject_id, roles=frozenset(roles or ()))


def has_any_role(identity: Identity, *roles: str) -> bool:
    return any(r in identity.roles for r in roles)


def touches_book_info(changed_fields: Iterable[str]) -> bool:
    return any(f in BOOK_INFO_FIELDS for f in changed_fields)


def can_modify_book_fields(identity: Identity, changed_fields: Iterable[str]) -> bool:
    if touches_book_info(changed_fields):
        return MODIFY_BOOKS in identity.roles
    return True


def can_update_user(identity: Identity, target_id: int) -> bool:
    return identity.subject_id == target_id or MODIFY_USERS in identity.roles


def can_change_roles(identity: Identity) -> bool:
    return MODIFY_USERS in identity.roles


def can_disable_user(identity: Identity, target_id: int) -> bool:
    return identity.subject_id == target_id or DISABLE_USERS in identity.roles


def can_view_user_history(identity: Identity, target_id: int) -> bool:
    return identity.subject_id == target_id or ADMIN in identity.roles
