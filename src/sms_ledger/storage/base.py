from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

Record = dict[str, Any]


class StorageError(Exception):
    """A storage call failed; the operation did not take effect."""


class Storage(ABC):
    """Flat-record tabular store.

    Where clauses are SQL fragments with named ``:param`` placeholders whose
    values come from ``args``.
    """

    @abstractmethod
    async def query(
        self,
        table: str,
        where: str | None = None,
        args: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        limit: int | None = None,
    ) -> list[Record]:
        pass

    @abstractmethod
    async def insert(self, table: str, record: Mapping[str, Any]) -> int:
        pass

    @abstractmethod
    async def update(
        self,
        table: str,
        patch: Mapping[str, Any],
        where: str,
        args: Mapping[str, Any] | None = None,
    ) -> int:
        pass

    @abstractmethod
    async def delete(self, table: str, where: str | None = None, args: Mapping[str, Any] | None = None) -> int:
        pass

    async def close(self) -> None:
        pass
