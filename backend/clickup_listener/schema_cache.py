"""Process-wide cache of the ticket table's column names."""

import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ColumnCache:
    """Memoizes the known ticket columns on first successful load.

    The schema does not change while the process runs, so concurrent first
    loads are harmless: each computes the same set. A failed load is not
    cached and is retried on the next call.
    """

    def __init__(self, columns: Optional[set[str]] = None):
        self._columns = frozenset(columns) if columns is not None else None

    def get(self, loader: Callable[[], set[str]]) -> frozenset[str]:
        if self._columns is None:
            columns = frozenset(loader())
            logger.debug(f"Loaded {len(columns)} ticket columns")
            self._columns = columns
        return self._columns

    def clear(self) -> None:
        self._columns = None
