# biblioteca/reservations.py
"""
Reservar y devolver libros.

Cada reserva vive dos veces: una entrada en book.reservations y otra en
user.reservations, enlazadas por contenido (libro, usuario, reserved_at),
no por una clave compartida. Las dos escrituras NO son transaccionales:
primero se guarda el libro y después el usuario. Si falla la segunda, el
libro queda con una entrada sin espejo; se registra y se devuelve error
interno, sin reparación automática.
"""
import logging
from typing import Iterable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from biblioteca import config, errors, models
from biblioteca.availability import is_available, is_open
from biblioteca.catalog import find_enabled_book
from biblioteca.membership import find_enabled_user

logger = logging.getLogger(__name__)


def match_book_entry(
    entries: Iterable[models.BookReservation], user: models.User
) -> Optional[models.BookReservation]:
    """
    Entrada del libro que cierra una devolución de `user`.
    Se recorre de la más reciente a la más antigua y gana la primera
    entrada abierta cuyo holder_id sea el de `user` o cuyo holder_name
    coincida con su nombre actual.
    """
    for entry in reversed(list(entries)):
        if not is_open(entry):
            continue
        if entry.holder_id == user.id:
            return entry
        if entry.holder_name == user.name:
            return entry
    return None


def match_user_entry(
    entries: Iterable[models.UserReservation], book_id: int
) -> Optional[models.UserReservation]:
    """Última entrada abierta del usuario para ese libro."""
    for entry in reversed(list(entries)):
        if entry.book_id == book_id and is_open(entry):
            return entry
    return None


def _commit(db: Session, tag: str, **context) -> Optional[errors.ServiceError]:
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("[%s] error guardando %s", tag, context)
        return errors.internal()
    return None


def reserve_book(db: Session, *, book_id, user_id, single_holder: Optional[bool] = None):
    """
    Registra la reserva en el libro y en el usuario.
    No descuenta stock. Por defecto un libro ya reservado se puede volver a
    reservar (la disponibilidad es una vista derivada, no un cerrojo); con
    single_holder=True se rechaza con Conflict.
    Devuelve: ({book_id, reservation_id}|None, ServiceError|None)
    """
    if single_holder is None:
        single_holder = config.SINGLE_HOLDER_RESERVATIONS

    book = find_enabled_book(db, book_id)
    if not book:
        return None, errors.not_found(errors.BOOK_NOT_FOUND)
    user = find_enabled_user(db, user_id)
    if not user:
        return None, errors.not_found(errors.USER_NOT_FOUND)

    if single_holder and not is_available(book):
        return None, errors.conflict("El libro ya está reservado")

    now = models.utcnow()
    entry = models.BookReservation(holder_id=user.id, holder_name=user.name, reserved_at=now)
    book.reservations.append(entry)
    err = _commit(db, "RESERVE", book_id=book.id, user_id=user.id, side="book")
    if err:
        return None, err

    user.reservations.append(models.UserReservation(book_id=book.id, reserved_at=now))
    err = _commit(db, "RESERVE", book_id=book.id, user_id=user.id, side="user")
    if err:
        logger.error(
            "[RESERVE] inconsistencia: entrada %s del libro %s sin espejo en usuario %s",
            entry.id, book.id, user.id,
        )
        return None, err

    logger.info("[RESERVE] libro=%s usuario=%s entrada=%s", book.id, user.id, entry.id)
    return {"book_id": book.id, "reservation_id": entry.id}, None


def return_book(db: Session, *, book_id, user_id):
    """
    Cierra la reserva abierta más reciente de ese usuario sobre ese libro,
    en cada lado por separado. Si un lado no tiene coincidencia queda como
    está y la operación igual es exitosa.
    Devuelve: ({book_id, reservation_id|None}|None, ServiceError|None)
    """
    book = find_enabled_book(db, book_id)
    if not book:
        return None, errors.not_found(errors.BOOK_NOT_FOUND)
    user = find_enabled_user(db, user_id)
    if not user:
        return None, errors.not_found(errors.USER_NOT_FOUND)

    now = models.utcnow()

    book_entry = match_book_entry(book.reservations, user)
    if book_entry:
        book_entry.returned_at = now
        # autocorrección de entradas antiguas incompletas
        if book_entry.holder_id is None:
            book_entry.holder_id = user.id
        if not book_entry.holder_name:
            book_entry.holder_name = user.name
    err = _commit(db, "RETURN", book_id=book.id, user_id=user.id, side="book")
    if err:
        return None, err

    user_entry = match_user_entry(user.reservations, book.id)
    if user_entry:
        user_entry.returned_at = now
    err = _commit(db, "RETURN", book_id=book.id, user_id=user.id, side="user")
    if err:
        if book_entry:
            logger.error(
                "[RETURN] inconsistencia: entrada %s del libro %s cerrada, usuario %s sin cerrar",
                book_entry.id, book.id, user.id,
            )
        return None, err

    if not book_entry and not user_entry:
        logger.info("[RETURN] sin reserva abierta libro=%s usuario=%s", book.id, user.id)
    else:
        logger.info(
            "[RETURN] libro=%s usuario=%s entrada=%s",
            book.id, user.id, book_entry.id if book_entry else None,
        )
    return {"book_id": book.id, "reservation_id": book_entry.id if book_entry else None}, None
