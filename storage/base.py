from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Dict, List, Mapping, Optional


class DataAccess(ABC):
    """
    Engine-agnostic data access contract.

    Everything outside storage/ (CLI, declarations, reports, snapshots) talks
    to the store through these methods only. Records are plain dicts keyed by
    column name; settings values are already decoded from JSON.
    """

    # -- lifecycle -----------------------------------------------------------

    @abstractmethod
    def open(self) -> Dict[str, Any]: ...

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @abstractmethod
    def transaction(self) -> AbstractContextManager: ...

    # -- generic CRUD --------------------------------------------------------

    @abstractmethod
    def get_all(self, table: str) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_by_id(self, table: str, id: int) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def count(self, table: str) -> int: ...

    @abstractmethod
    def insert(self, table: str, record: Mapping[str, Any]) -> int: ...

    @abstractmethod
    def update(self, table: str, id: int, partial: Mapping[str, Any]) -> int: ...

    @abstractmethod
    def delete(self, table: str, id: int) -> int: ...

    # -- named queries -------------------------------------------------------

    @abstractmethod
    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    def get_settings(self) -> Dict[str, Any]: ...

    @abstractmethod
    def upsert_setting(self, key: str, value: Any) -> None: ...

    @abstractmethod
    def get_payments_by_client(self, client_id: int) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_documents_by_client(self, client_id: int) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_attendances_by_client(self, client_id: int) -> List[Dict[str, Any]]: ...

    def get_setting(self, key: str, default: Any = None) -> Any:
        return self.get_settings().get(key, default)

    def get_last_payment(self, client_id: int) -> Optional[Dict[str, Any]]:
        """Payment with the highest reference period, or None."""
        payments = [p for p in self.get_payments_by_client(client_id) if p.get("referencia")]
        if not payments:
            return None
        return max(payments, key=lambda p: (p["referencia"], p.get("id") or 0))

    # -- composite transactions ---------------------------------------------

    @abstractmethod
    def delete_client_and_relations(self, client_id: int) -> bool: ...

    @abstractmethod
    def wipe_transactional_data(self) -> Dict[str, int]: ...

    @abstractmethod
    def replace_all(self, tables: Mapping[str, List[Dict[str, Any]]]) -> Dict[str, int]: ...
