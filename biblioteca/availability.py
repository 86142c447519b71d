# biblioteca/availability.py
"""
Disponibilidad derivada del historial de reservas.

Un libro está reservado si tiene al menos una entrada sin returned_at.
El mismo predicado existe en dos formas que deben coincidir siempre:
  - is_available(book): en memoria, sobre un libro ya cargado
  - availability_clause(status): cláusula SQL para filtrar en la consulta
"""
from __future__ import annotations

from typing import Optional

from sqlalchemy import and_, exists, not_
from sqlalchemy.sql.elements import ColumnElement

from biblioteca import errors
from biblioteca.models import Book, BookReservation

AVAILABLE = "available"
RESERVED = "reserved"
STATUSES = (AVAILABLE, RESERVED)


def is_open(entry) -> bool:
    return entry.returned_at is None


def is_available(book: Book) -> bool:
    return not any(is_open(e) for e in book.reservations)


def status_of(book: Book) -> str:
    return AVAILABLE if is_available(book) else RESERVED


def has_open_reservation() -> ColumnElement[bool]:
    """EXISTS correlacionado con Book: hay una entrada abierta para este libro."""
    return exists().where(
        and_(
            BookReservation.book_id == Book.id,
            BookReservation.returned_at.is_(None),
        )
    )


def availability_clause(status: str) -> tuple[Optional[ColumnElement[bool]], Optional[errors.ServiceError]]:
    if status == AVAILABLE:
        return not_(has_open_reservation()), None
    if status == RESERVED:
        return has_open_reservation(), None
    return None, errors.validation(
        f"Disponibilidad inválida: usa {' o '.join(STATUSES)}"
    )
