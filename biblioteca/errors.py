# biblioteca/errors.py
"""
Errores de servicio.

Los servicios devuelven tuplas (resultado, err): si err no es None, el
resultado es None. Así la capa HTTP solo traduce ErrorKind -> status.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return self.message


def validation(message: str) -> ServiceError:
    return ServiceError(ErrorKind.VALIDATION, message)


def unauthenticated(message: str = "No autenticado") -> ServiceError:
    return ServiceError(ErrorKind.UNAUTHENTICATED, message)


def forbidden(message: str) -> ServiceError:
    return ServiceError(ErrorKind.FORBIDDEN, message)


def not_found(message: str) -> ServiceError:
    return ServiceError(ErrorKind.NOT_FOUND, message)


def conflict(message: str) -> ServiceError:
    return ServiceError(ErrorKind.CONFLICT, message)


def internal(message: str = "Error interno") -> ServiceError:
    # nunca incluir el texto de la excepción de la base de datos
    return ServiceError(ErrorKind.INTERNAL, message)


BOOK_NOT_FOUND = "Libro no encontrado"
USER_NOT_FOUND = "Usuario no encontrado"
