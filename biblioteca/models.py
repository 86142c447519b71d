from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    # naive UTC: SQLite no guarda zona horaria
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    ...


class Book(Base):
    __tablename__ = "books"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str] = mapped_column(String(255), index=True)
    author: Mapped[str] = mapped_column(String(255), index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    category: Mapped[str] = mapped_column(String(120), default="General", index=True)
    publisher: Mapped[str] = mapped_column(String(255), index=True)
    published_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    stock: Mapped[int] = mapped_column(Integer, default=1)  # informativo, las reservas no lo tocan
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    reservations: Mapped[List["BookReservation"]] = relationship(
        back_populates="book",
        order_by="BookReservation.id",
        cascade="all, delete-orphan",
    )


class BookReservation(Base):
    """Entrada del historial del libro. Sin returned_at = reserva abierta."""

    __tablename__ = "book_reservations"

    id: Mapped[int] = mapped_column(primary_key=True)
    book_id: Mapped[int] = mapped_column(
        ForeignKey("books.id", ondelete="CASCADE"),
        index=True,
    )
    holder_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    # copia del nombre del usuario al reservar, no se sincroniza
    holder_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    reserved_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)

    book: Mapped["Book"] = relationship(back_populates="reservations")


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(320), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    roles: Mapped[List[str]] = mapped_column(JSON, default=lambda: ["USER"])
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    reservations: Mapped[List["UserReservation"]] = relationship(
        back_populates="user",
        order_by="UserReservation.id",
        cascade="all, delete-orphan",
    )


class UserReservation(Base):
    """Espejo en el usuario de una entrada de BookReservation (por libro + reserved_at)."""

    __tablename__ = "user_reservations"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
    )
    book_id: Mapped[int] = mapped_column(ForeignKey("books.id"), index=True)
    reserved_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    returned_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    user: Mapped["User"] = relationship(back_populates="reservations")
    book: Mapped[Optional["Book"]] = relationship()
