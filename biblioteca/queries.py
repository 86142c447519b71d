# biblioteca/queries.py
"""
Listados paginados del catálogo.

Todos los filtros se combinan con AND y se resuelven en la base de datos,
incluida la disponibilidad: así `total` y `total_pages` describen el mismo
conjunto que se pagina.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Callable, Optional

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from biblioteca import models
from biblioteca.availability import availability_clause
from biblioteca.config import DEFAULT_PAGE_SIZE

logger = logging.getLogger(__name__)


@dataclass
class BookFilters:
    include_disabled: bool = False
    category: Optional[str] = None
    author: Optional[str] = None
    title: Optional[str] = None
    publisher: Optional[str] = None
    published_on: Optional[date] = None
    availability: Optional[str] = None  # "available" | "reserved"


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """[00:00:00.000, 23:59:59.999] del día dado."""
    if isinstance(day, datetime):
        day = day.date()
    start = datetime.combine(day, time.min)
    end = datetime.combine(day, time(23, 59, 59, 999000))
    return start, end


def clamp_page(page, per_page) -> tuple[int, int]:
    def _to_int(value, default: int) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    return max(1, _to_int(page, 1)), max(1, _to_int(per_page, DEFAULT_PAGE_SIZE))


def paginate(db: Session, stmt: Select, page, per_page, serialize: Callable) -> dict:
    """
    Cuenta y pagina la misma consulta.
    `stmt` debe traer un orden estable (p. ej. por id) para que recorrer
    todas las páginas devuelva cada elemento exactamente una vez.
    """
    page, per_page = clamp_page(page, per_page)
    skip = (page - 1) * per_page

    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = db.scalars(stmt.offset(skip).limit(per_page)).all()

    return {
        "data": [serialize(r) for r in rows],
        "meta": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": math.ceil(total / per_page),
        },
    }


def book_filter_clauses(filters: BookFilters):
    clauses = []
    if not filters.include_disabled:
        clauses.append(models.Book.enabled.is_(True))

    # Subcadena sin distinguir mayúsculas; % y _ del usuario se escapan
    for attr in ("category", "author", "title", "publisher"):
        value = getattr(filters, attr)
        if value:
            clauses.append(getattr(models.Book, attr).icontains(value, autoescape=True))

    if filters.published_on is not None:
        start, end = day_bounds(filters.published_on)
        clauses.append(models.Book.published_at.between(start, end))

    if filters.availability:
        clause, err = availability_clause(filters.availability)
        if err:
            return None, err
        clauses.append(clause)
    return clauses, None


def list_item(book: models.Book) -> dict:
    # el listado solo expone el título; el detalle va por get_book
    return {"id": book.id, "title": book.title}


def list_books(db: Session, filters: Optional[BookFilters] = None, page=1, per_page=None):
    """
    Devuelve: ({data, meta}|None, ServiceError|None)
    """
    filters = filters or BookFilters()
    clauses, err = book_filter_clauses(filters)
    if err:
        return None, err
    stmt = select(models.Book).where(*clauses).order_by(models.Book.id)
    result = paginate(db, stmt, page, per_page if per_page is not None else DEFAULT_PAGE_SIZE, list_item)
    logger.debug("[QUERY] list_books filters=%s total=%s", filters, result["meta"]["total"])
    return result, None
