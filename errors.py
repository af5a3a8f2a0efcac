# errors.py
# Erros de negócio/persistência. A UI distingue validação x armazenamento pelo tipo.

from __future__ import annotations
from typing import Optional


class LedgerError(Exception):
    """Base de todos os erros do sistema."""


class ValidationError(LedgerError):
    """Dados inválidos. Levantado antes de qualquer escrita."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(LedgerError):
    def __init__(self, collection: str, entity_id):
        super().__init__(f"{collection} #{entity_id} não encontrado")
        self.collection = collection
        self.entity_id = entity_id


class StorageError(LedgerError):
    """Falha no banco (conexão, transação, conflito de versão)."""
