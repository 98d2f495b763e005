"""Chunked commits that stay under the store's per-batch mutation ceiling."""

from __future__ import annotations

from loguru import logger
from sqlalchemy.orm import Session

HARD_BATCH_LIMIT = 500
DEFAULT_BATCH_LIMIT = 490


class BatchedWriter:
    """Count writes against a session and commit before the limit is exceeded."""

    def __init__(self, session: Session, *, limit: int = DEFAULT_BATCH_LIMIT) -> None:
        if not 0 < limit <= HARD_BATCH_LIMIT:
            raise ValueError(f"batch limit must be between 1 and {HARD_BATCH_LIMIT}")
        self._session = session
        self.limit = limit
        self.pending = 0
        self.commits = 0

    def reserve(self, operations: int = 1) -> None:
        """Make room for ``operations`` more writes, committing the current batch if needed."""

        if self.pending and self.pending + operations > self.limit:
            self.commit()

    def record(self, operations: int = 1) -> None:
        self.pending += operations

    def commit(self) -> None:
        if not self.pending:
            return
        logger.debug("Committing batch of {} writes", self.pending)
        self._session.commit()
        self.pending = 0
        self.commits += 1


__all__ = ["BatchedWriter", "DEFAULT_BATCH_LIMIT", "HARD_BATCH_LIMIT"]
