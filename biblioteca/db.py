import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import sessionmaker

from biblioteca.config import DATABASE_URL


def ensure_sqlite_dir(database_url: str) -> None:
    """Crea la carpeta del fichero SQLite; con memoria u otros motores no hace nada."""
    try:
        url = make_url(database_url)
    except ArgumentError:
        # create_engine dará el error con más contexto
        return
    if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
        return
    folder = os.path.dirname(url.database)
    if folder:
        os.makedirs(folder, exist_ok=True)


def build_engine(database_url: str) -> Engine:
    ensure_sqlite_dir(database_url)
    # SQLite + FastAPI: la sesión puede cruzar hilos del threadpool
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(DATABASE_URL)
# expire_on_commit=False: las rutas serializan los objetos después del commit
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(bind=None):
    """Crea las tablas de libros, usuarios y sus historiales si faltan."""
    from biblioteca import models

    models.Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
