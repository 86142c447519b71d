# biblioteca/catalog.py
import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from biblioteca import errors, models
from biblioteca.availability import status_of
from biblioteca.permissions import (
    BOOK_INFO_FIELDS,
    BOOK_OPERATIONAL_FIELDS,
    Identity,
    can_modify_book_fields,
)

logger = logging.getLogger(__name__)

REQUIRED_BOOK_FIELDS = ("title", "author", "publisher", "published_at")
# reservations es operativo, pero solo se escribe desde reservations.py
WRITABLE_BOOK_FIELDS = (BOOK_INFO_FIELDS | BOOK_OPERATIONAL_FIELDS) - {"reservations"}


def find_enabled_book(db: Session, book_id) -> Optional[models.Book]:
    """
    Único punto de búsqueda de libros para lecturas y escrituras.
    Un libro deshabilitado se comporta igual que uno inexistente.
    """
    if book_id is None:
        return None
    return db.scalars(
        select(models.Book).where(models.Book.id == book_id, models.Book.enabled.is_(True))
    ).first()


def parse_date(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value.strip():
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    return None


def _valid_stock(stock) -> bool:
    return isinstance(stock, int) and not isinstance(stock, bool) and stock >= 0


def book_to_dict(book: models.Book) -> dict:
    return {
        "id": book.id,
        "title": book.title,
        "author": book.author,
        "description": book.description,
        "category": book.category,
        "publisher": book.publisher,
        "published_at": book.published_at,
        "stock": book.stock,
        "enabled": book.enabled,
        "status": status_of(book),
        "created_at": book.created_at,
        "updated_at": book.updated_at,
    }


def create_book(
    db: Session,
    *,
    title: str,
    author: str,
    publisher: str,
    published_at,
    stock: int,
    description: str = "",
    category: str = "General",
):
    """
    Crea un libro con historial vacío.
    Devuelve: (Book|None, ServiceError|None)
    """
    published = parse_date(published_at)
    if not (title or "").strip() or not (author or "").strip() or not (publisher or "").strip():
        return None, errors.validation("Datos incompletos o inválidos")
    if published is None or not _valid_stock(stock):
        return None, errors.validation("Datos incompletos o inválidos")

    book = models.Book(
        title=title.strip(),
        author=author.strip(),
        description=description or "",
        category=category or "General",
        publisher=publisher.strip(),
        published_at=published,
        stock=stock,
        enabled=True,
    )
    db.add(book)
    try:
        db.commit()
        db.refresh(book)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[CATALOG] error creando libro title=%r", title)
        return None, errors.internal()
    logger.info("[CATALOG] libro creado id=%s title=%r", book.id, book.title)
    return book, None


def get_book(db: Session, book_id):
    book = find_enabled_book(db, book_id)
    if not book:
        return None, errors.not_found(errors.BOOK_NOT_FOUND)
    return book, None


def update_book(db: Session, identity: Identity, book_id, changes: dict):
    """
    Actualiza campos del libro.
    Cambiar información (título, autor, ...) exige MODIFY_BOOKS;
    cambiar solo stock/enabled no.
    """
    changes = dict(changes or {})
    if not changes:
        return None, errors.validation("No hay nada que actualizar")

    unknown = sorted(set(changes) - WRITABLE_BOOK_FIELDS)
    if unknown:
        return None, errors.validation(f"Campos no modificables: {', '.join(unknown)}")

    if not can_modify_book_fields(identity, changes):
        return None, errors.forbidden("No tienes permisos para modificar la información del libro")

    # Validamos antes de buscar/escribir: nada se escribe si algo falla
    if "published_at" in changes:
        published = parse_date(changes["published_at"])
        if published is None:
            return None, errors.validation("Fecha de publicación inválida")
        changes["published_at"] = published
    if "stock" in changes and not _valid_stock(changes["stock"]):
        return None, errors.validation("Stock inválido")
    if "enabled" in changes and not isinstance(changes["enabled"], bool):
        return None, errors.validation("enabled debe ser booleano")
    for key in ("title", "author", "publisher"):
        if key in changes and not (isinstance(changes[key], str) and changes[key].strip()):
            return None, errors.validation(f"{key} no puede estar vacío")

    book = find_enabled_book(db, book_id)
    if not book:
        return None, errors.not_found(errors.BOOK_NOT_FOUND)

    for key, value in changes.items():
        setattr(book, key, value.strip() if isinstance(value, str) and key != "description" else value)
    try:
        db.commit()
        db.refresh(book)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[CATALOG] error actualizando libro id=%s", book_id)
        return None, errors.internal()
    logger.info("[CATALOG] libro actualizado id=%s campos=%s", book.id, sorted(changes))
    return book, None


def disable_book(db: Session, book_id):
    """Soft-delete: el libro queda en la base pero fuera del tráfico normal."""
    book = find_enabled_book(db, book_id)
    if not book:
        return None, errors.not_found(errors.BOOK_NOT_FOUND)
    book.enabled = False
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[CATALOG] error deshabilitando libro id=%s", book_id)
        return None, errors.internal()
    logger.info("[CATALOG] libro deshabilitado id=%s", book.id)
    return {"id": book.id}, None


def book_history(db: Session, book_id):
    book = find_enabled_book(db, book_id)
    if not book:
        return None, errors.not_found(errors.BOOK_NOT_FOUND)
    history = [
        {
            "holder_name": entry.holder_name or "Usuario eliminado",
            "reserved_at": entry.reserved_at,
            "returned_at": entry.returned_at,
        }
        for entry in book.reservations
    ]
    return history, None
