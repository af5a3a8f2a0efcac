# settings.py
# Configuração via variáveis de ambiente + logging global

from __future__ import annotations
import logging
import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///salgados.db")
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
CMV_DEFAULT_PERCENT: Decimal = Decimal(os.getenv("CMV_DEFAULT_PERCENT", "35"))
APP_NAME_DEFAULT: str = os.getenv("APP_NAME", "SalgadosPro")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Loggers de módulo ("salgados.*") herdam esta configuração."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
