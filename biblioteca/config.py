# biblioteca/config.py
import os

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/library.db")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))

# Opt-in: un libro con una reserva abierta no se puede volver a reservar.
# Por defecto se permiten varias reservas abiertas sobre el mismo libro.
SINGLE_HOLDER_RESERVATIONS = os.getenv("SINGLE_HOLDER_RESERVATIONS", "false").lower() == "true"


def parse_api_tokens(raw: str) -> dict:
    """
    "token1:3,token2:7" -> {"token1": 3, "token2": 7}
    Entradas mal formadas se ignoran.
    """
    tokens = {}
    for item in raw.split(","):
        token, sep, user_id = item.strip().partition(":")
        if not sep or not token.strip() or not user_id.strip().isdigit():
            continue
        tokens[token.strip()] = int(user_id.strip())
    return tokens


API_TOKENS = parse_api_tokens(os.getenv("API_TOKENS", ""))
