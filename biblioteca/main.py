import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Header, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from biblioteca import catalog, config, membership, queries, reservations
from biblioteca.auth import StaticTokenVerifier, TokenVerifier, authenticate
from biblioteca.db import get_db, init_db
from biblioteca.errors import ErrorKind, ServiceError
from biblioteca.permissions import ADMIN, USER, Identity, has_any_role

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


class ServiceFailure(Exception):
    def __init__(self, error: ServiceError) -> None:
        super().__init__(error.message)
        self.error = error


def unwrap(result, err: Optional[ServiceError]):
    if err:
        raise ServiceFailure(err)
    return result


def ok(message: str, result: Any = None) -> dict:
    return {"status": "success", "message": message, "result": result}


def _error_body(message: str) -> dict:
    return {"status": "error", "message": message, "result": None}


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info("[APP] base de datos lista")
    yield


app = FastAPI(title="Biblioteca", version="0.2.0", lifespan=lifespan)


@app.exception_handler(ServiceFailure)
async def service_failure_handler(request: Request, exc: ServiceFailure):
    return JSONResponse(status_code=STATUS_BY_KIND[exc.error.kind], content=_error_body(exc.error.message))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=_error_body("Datos incompletos o inválidos"))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    # sin trazas ni texto de la base de datos hacia el cliente
    logger.exception("[APP] error no controlado en %s %s", request.method, request.url.path)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_body("Error interno"))


# --- Autenticación / permisos ---

def get_token_verifier() -> TokenVerifier:
    return StaticTokenVerifier(config.API_TOKENS)


def current_identity(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Identity:
    return unwrap(*authenticate(db, verifier, authorization))


def permit_roles(*roles: str):
    def dependency(identity: Identity = Depends(current_identity)) -> Identity:
        if not has_any_role(identity, *roles):
            raise ServiceFailure(
                ServiceError(ErrorKind.FORBIDDEN, "No tienes permisos para acceder a esta ruta")
            )
        return identity

    return dependency


# --- Esquemas de entrada ---

class BookIn(BaseModel):
    title: str
    author: str
    publisher: str
    published_at: date
    stock: int
    description: str = ""
    category: str = "General"


class UserIn(BaseModel):
    name: str
    email: str
    password: str = Field(min_length=1, max_length=membership.MAX_PASSWORD_BYTES)
    roles: Optional[List[str]] = None


# --- Rutas ---

@app.get("/healthz")
def health():
    return {"ok": True}


@app.post("/books", status_code=status.HTTP_201_CREATED)
def api_create_book(
    payload: BookIn,
    db: Session = Depends(get_db),
    identity: Identity = Depends(permit_roles(ADMIN)),
):
    book = unwrap(*catalog.create_book(db, **payload.model_dump()))
    return ok("Libro creado", catalog.book_to_dict(book))


@app.get("/books")
def api_list_books(
    page: int = 1,
    limit: int = Query(default=config.DEFAULT_PAGE_SIZE),
    category: Optional[str] = None,
    author: Optional[str] = None,
    title: Optional[str] = None,
    publisher: Optional[str] = None,
    published_on: Optional[str] = None,
    availability: Optional[str] = None,
    include_disabled: bool = False,
    db: Session = Depends(get_db),
    identity: Identity = Depends(current_identity),
):
    day = catalog.parse_date(published_on)
    if published_on and day is None:
        # fecha no reconocida: se ignora el filtro
        logger.debug("[APP] published_on ignorado: %r", published_on)
    filters = queries.BookFilters(
        include_disabled=include_disabled,
        category=category,
        author=author,
        title=title,
        publisher=publisher,
        published_on=day.date() if day else None,
        availability=availability,
    )
    return ok("Lista de libros", unwrap(*queries.list_books(db, filters, page, limit)))


@app.get("/books/{book_id}")
def api_get_book(book_id: int, db: Session = Depends(get_db), identity: Identity = Depends(current_identity)):
    book = unwrap(*catalog.get_book(db, book_id))
    return ok("Libro encontrado", catalog.book_to_dict(book))


@app.put("/books/{book_id}")
def api_update_book(
    book_id: int,
    changes: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    identity: Identity = Depends(permit_roles(ADMIN)),
):
    book = unwrap(*catalog.update_book(db, identity, book_id, changes))
    return ok("Libro actualizado", catalog.book_to_dict(book))


@app.delete("/books/{book_id}")
def api_disable_book(
    book_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(permit_roles(ADMIN)),
):
    return ok("Libro deshabilitado", unwrap(*catalog.disable_book(db, book_id)))


@app.post("/books/{book_id}/reserve")
def api_reserve_book(
    book_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(permit_roles(USER, ADMIN)),
):
    ref = unwrap(*reservations.reserve_book(db, book_id=book_id, user_id=identity.subject_id))
    return ok("Reserva registrada", ref)


@app.post("/books/{book_id}/return")
def api_return_book(
    book_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(permit_roles(USER, ADMIN)),
):
    ref = unwrap(*reservations.return_book(db, book_id=book_id, user_id=identity.subject_id))
    return ok("Devolución registrada", ref)


@app.get("/books/{book_id}/reservations")
def api_book_history(book_id: int, db: Session = Depends(get_db), identity: Identity = Depends(current_identity)):
    return ok("Historial de reservas del libro", unwrap(*catalog.book_history(db, book_id)))


@app.post("/users/register", status_code=status.HTTP_201_CREATED)
def api_register_user(payload: UserIn, db: Session = Depends(get_db)):
    # registro público: siempre con el rol por defecto
    user = unwrap(*membership.register_user(db, name=payload.name, email=payload.email, password=payload.password))
    return ok("Usuario registrado", membership.user_to_dict(user))


@app.post("/users", status_code=status.HTTP_201_CREATED)
def api_create_user(
    payload: UserIn,
    db: Session = Depends(get_db),
    identity: Identity = Depends(permit_roles(ADMIN)),
):
    user = unwrap(*membership.register_user(db, **payload.model_dump()))
    return ok("Usuario creado", membership.user_to_dict(user))


@app.get("/users")
def api_list_users(
    page: int = 1,
    limit: int = Query(default=config.DEFAULT_PAGE_SIZE),
    include_disabled: bool = False,
    db: Session = Depends(get_db),
    identity: Identity = Depends(current_identity),
):
    result = unwrap(*membership.list_users(db, page=page, per_page=limit, include_disabled=include_disabled))
    return ok("Lista de usuarios", result)


@app.get("/users/{user_id}")
def api_get_user(user_id: int, db: Session = Depends(get_db), identity: Identity = Depends(current_identity)):
    user = unwrap(*membership.get_user(db, user_id))
    return ok("Usuario encontrado", membership.user_to_dict(user))


@app.put("/users/{user_id}")
def api_update_user(
    user_id: int,
    changes: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    identity: Identity = Depends(current_identity),
):
    user = unwrap(*membership.update_user(db, identity, user_id, changes))
    return ok("Usuario actualizado", membership.user_to_dict(user))


@app.delete("/users/{user_id}")
def api_disable_user(user_id: int, db: Session = Depends(get_db), identity: Identity = Depends(current_identity)):
    return ok("Usuario deshabilitado", unwrap(*membership.disable_user(db, identity, user_id)))


@app.get("/users/{user_id}/reservations")
def api_user_history(user_id: int, db: Session = Depends(get_db), identity: Identity = Depends(current_identity)):
    return ok("Historial de reservas", unwrap(*membership.user_history(db, identity, user_id)))
