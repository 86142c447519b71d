# biblioteca/auth.py
"""
Borde de autenticación.

La emisión/verificación de tokens queda fuera: un TokenVerifier traduce
una credencial bearer a un id de usuario. Aquí solo se carga el usuario,
se exige que esté habilitado y se arma la Identity con sus roles.
"""
from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from sqlalchemy.orm import Session

from biblioteca import errors
from biblioteca.membership import find_enabled_user
from biblioteca.permissions import Identity

logger = logging.getLogger(__name__)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Optional[int]:
        ...


class StaticTokenVerifier:
    """Tokens fijos desde configuración (API_TOKENS="token:user_id,...")."""

    def __init__(self, tokens: Dict[str, int]) -> None:
        self._tokens = dict(tokens)

    def verify(self, token: str) -> Optional[int]:
        return self._tokens.get(token)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def authenticate(db: Session, verifier: TokenVerifier, authorization: Optional[str]):
    """
    Devuelve: (Identity|None, ServiceError|None)
    """
    token = bearer_token(authorization)
    if token is None:
        return None, errors.unauthenticated("Token no enviado")

    subject_id = verifier.verify(token)
    if subject_id is None:
        return None, errors.unauthenticated("Token inválido")

    user = find_enabled_user(db, subject_id)
    if not user:
        logger.warning("[AUTH] token válido para usuario inexistente o deshabilitado id=%s", subject_id)
        return None, errors.unauthenticated("Usuario no autorizado")

    # los roles salen del usuario guardado, no del token
    return Identity.of(user.id, user.roles), None
