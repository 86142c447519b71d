# biblioteca/membership.py
import logging
from typing import Optional

import bcrypt
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from biblioteca import errors, models
from biblioteca.permissions import (
    USER,
    Identity,
    can_change_roles,
    can_disable_user,
    can_update_user,
    can_view_user_history,
)
from biblioteca.queries import paginate

logger = logging.getLogger(__name__)

UPDATABLE_USER_FIELDS = frozenset({"name", "email", "roles"})
# bcrypt no acepta contraseñas de más de 72 bytes
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def find_enabled_user(db: Session, user_id) -> Optional[models.User]:
    """Igual que find_enabled_book: deshabilitado == inexistente."""
    if user_id is None:
        return None
    return db.scalars(
        select(models.User).where(models.User.id == user_id, models.User.enabled.is_(True))
    ).first()


def _email_taken(db: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    # incluye usuarios deshabilitados: el email es único en toda la tabla
    stmt = select(func.count()).select_from(models.User).where(models.User.email == email)
    if exclude_id is not None:
        stmt = stmt.where(models.User.id != exclude_id)
    return db.scalar(stmt) > 0


def user_to_dict(user: models.User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "roles": list(user.roles or []),
        "enabled": user.enabled,
        "created_at": user.created_at,
        "updated_at": user.updated_at,
    }


def register_user(db: Session, *, name: str, email: str, password: str, roles=None):
    """
    Registra un usuario nuevo.
    Devuelve: (User|None, ServiceError|None)
    """
    email = _normalize_email(email)
    if not (name or "").strip() or not email or not password:
        return None, errors.validation("Datos incompletos")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return None, errors.validation(f"La contraseña no puede superar {MAX_PASSWORD_BYTES} bytes")

    # Verificar duplicado antes (más claro que depender de la excepción)
    if _email_taken(db, email):
        return None, errors.conflict("El email ya está registrado")

    user = models.User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        roles=list(roles) if roles else [USER],
        enabled=True,
    )
    db.add(user)
    try:
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        return None, errors.conflict("El email ya está registrado")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[MEMBERS] error registrando usuario")
        return None, errors.internal()
    logger.info("[MEMBERS] usuario registrado id=%s", user.id)
    return user, None


def get_user(db: Session, user_id):
    user = find_enabled_user(db, user_id)
    if not user:
        return None, errors.not_found(errors.USER_NOT_FOUND)
    return user, None


def list_users(db: Session, *, page=1, per_page=10, include_disabled: bool = False):
    stmt = select(models.User).order_by(models.User.id)
    if not include_disabled:
        stmt = stmt.where(models.User.enabled.is_(True))
    return paginate(db, stmt, page, per_page, user_to_dict), None


def update_user(db: Session, identity: Identity, user_id, changes: dict):
    """
    Un usuario solo puede ser modificado por él mismo o por alguien con MODIFY_USERS.
    - password nunca se cambia por aquí (se descarta)
    - roles se descarta salvo que quien llama tenga MODIFY_USERS
    """
    if not can_update_user(identity, user_id):
        return None, errors.forbidden("No tienes permisos para modificar este usuario")

    changes = dict(changes or {})
    changes.pop("password", None)
    if "roles" in changes and not can_change_roles(identity):
        changes.pop("roles")

    unknown = sorted(set(changes) - UPDATABLE_USER_FIELDS)
    if unknown:
        return None, errors.validation(f"Campos no modificables: {', '.join(unknown)}")

    if "name" in changes:
        if not isinstance(changes["name"], str) or not changes["name"].strip():
            return None, errors.validation("El nombre no puede estar vacío")
        changes["name"] = changes["name"].strip()
    if "email" in changes:
        changes["email"] = _normalize_email(changes["email"]) if isinstance(changes["email"], str) else ""
        if not changes["email"]:
            return None, errors.validation("Email inválido")
    if "roles" in changes:
        roles = changes["roles"]
        if not isinstance(roles, (list, tuple, set)) or not all(isinstance(r, str) for r in roles):
            return None, errors.validation("roles debe ser una lista de textos")
        # lista nueva: el tipo JSON no detecta mutaciones in-place
        changes["roles"] = sorted(set(roles))

    user = find_enabled_user(db, user_id)
    if not user:
        return None, errors.not_found(errors.USER_NOT_FOUND)
    if "email" in changes and _email_taken(db, changes["email"], exclude_id=user.id):
        return None, errors.conflict("El email ya está registrado")

    for key, value in changes.items():
        setattr(user, key, value)
    try:
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        return None, errors.conflict("El email ya está registrado")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[MEMBERS] error actualizando usuario id=%s", user_id)
        return None, errors.internal()
    logger.info("[MEMBERS] usuario actualizado id=%s campos=%s", user.id, sorted(changes))
    return user, None


def disable_user(db: Session, identity: Identity, user_id):
    if not can_disable_user(identity, user_id):
        return None, errors.forbidden("No tienes permisos para deshabilitar este usuario")
    user = find_enabled_user(db, user_id)
    if not user:
        return None, errors.not_found(errors.USER_NOT_FOUND)
    user.enabled = False
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[MEMBERS] error deshabilitando usuario id=%s", user_id)
        return None, errors.internal()
    logger.info("[MEMBERS] usuario deshabilitado id=%s", user.id)
    return {"id": user.id}, None


def user_history(db: Session, identity: Identity, user_id):
    """Historial del usuario con título/autor del libro (el libro puede ya no existir)."""
    if not can_view_user_history(identity, user_id):
        return None, errors.forbidden("No tienes permisos para ver este historial")
    user = find_enabled_user(db, user_id)
    if not user:
        return None, errors.not_found(errors.USER_NOT_FOUND)

    history = []
    for entry in user.reservations:
        book = entry.book
        history.append(
            {
                "book": {
                    "id": entry.book_id,
                    "title": book.title if book else "Libro eliminado",
                    "author": book.author if book else "N/A",
                },
                "reserved_at": entry.reserved_at,
                "returned_at": entry.returned_at,
            }
        )
    return history, None
