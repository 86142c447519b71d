import os

# Antes de importar biblioteca: nada de tocar ./data durante los tests
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["API_TOKENS"] = ""
os.environ["SINGLE_HOLDER_RESERVATIONS"] = "false"

import bcrypt
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from biblioteca import catalog, membership
from biblioteca.models import Base
from biblioteca.permissions import Identity


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    gensalt = bcrypt.gensalt
    monkeypatch.setattr(bcrypt, "gensalt", lambda rounds=4, prefix=b"2b": gensalt(4, prefix))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_book(db):
    def _make(**overrides):
        data = {
            "title": "El Quijote",
            "author": "Cervantes",
            "publisher": "X",
            "published_at": "1605-01-01",
            "stock": 1,
        }
        data.update(overrides)
        book, err = catalog.create_book(db, **data)
        assert err is None, err
        return book

    return _make


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(name="Ana", email=None, roles=None, password="secreto"):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        user, err = membership.register_user(db, name=name, email=email, password=password, roles=roles)
        assert err is None, err
        return user

    return _make


@pytest.fixture
def identity_for():
    def _identity(user) -> Identity:
        return Identity.of(user.id, user.roles)

    return _identity
