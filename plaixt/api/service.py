"""
StoreService: the loaded store behind the HTTP API.

Holds the current snapshot (LoadResult + Adapter) and swaps it atomically
on reload, so a request always sees one consistent record set.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Tuple

from ..config import Settings
from ..errors import PlaixtError
from ..paperless import PaperlessClient
from ..query import Adapter
from ..store import LoadResult, Store

logger = logging.getLogger(__name__)


class StoreNotLoaded(PlaixtError):
    """No snapshot is available (the last load failed)."""

    def __init__(self, message: str = "The store has not been loaded") -> None:
        super().__init__(message, code="STORE_NOT_LOADED")


class StoreService:
    """Owns the store, its current snapshot and the document client.

    Thread-safety:
        - reload() builds the new snapshot outside the lock and swaps it in
        - snapshot() returns an immutable (LoadResult, Adapter) pair
    """

    def __init__(
        self,
        settings: Settings,
        store: Optional[Store] = None,
        paperless: Optional[PaperlessClient] = None,
    ) -> None:
        self.settings = settings
        self.store = store if store is not None else Store.from_settings(settings)
        self.paperless = paperless if paperless is not None else PaperlessClient.from_settings(
            settings
        )
        self._lock = threading.Lock()
        self._snapshot: Optional[Tuple[LoadResult, Adapter]] = None

    def reload(self) -> LoadResult:
        """Load the store again and publish the new snapshot.

        Raises:
            DefinitionStoreUnavailable: If the definitions folder is unreadable;
                the previous snapshot stays in place
        """
        result = self.store.load()
        adapter = Adapter.from_load_result(
            result,
            root=self.store.root,
            paperless=self.paperless,
            default_timeout=self.settings.query_timeout_seconds,
        )
        with self._lock:
            self._snapshot = (result, adapter)
        return result

    def snapshot(self) -> Tuple[LoadResult, Adapter]:
        with self._lock:
            if self._snapshot is None:
                raise StoreNotLoaded()
            return self._snapshot

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def close(self) -> None:
        if self.paperless is not None:
            self.paperless.close()
