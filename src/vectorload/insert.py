import logging
import time
from typing import List, Optional, Sequence

from .columns import BatchRecord, Column, encode_batch, row_count
from .exceptions import CountMismatchError, ValidationError
from .metrics import (
    DATA_SIZE, DURATION, ERRORS, REQS, STATUS_ERROR, STATUS_SUCCESS, VECTORS, MetricsSink, operation_tags,
)
from .models import CollectionSchema
from .store import VectorStore

logger = logging.getLogger(__name__)


class InsertCoordinator:
    """Writes encoded columns to one collection and validates the store's acknowledgement."""

    def __init__(self, store: VectorStore, metrics: MetricsSink, collection: str,
                 schema: Optional[CollectionSchema] = None):
        self.store = store
        self.metrics = metrics
        self.collection = collection
        self.schema = schema

    def insert(self, record: BatchRecord) -> List[int]:
        """Encode a batch record against the collection schema and submit it."""
        return self.submit(encode_batch(record, self.schema))

    def submit(self, columns: Sequence[Column]) -> List[int]:
        """
        Write columns and return the ids of the inserted rows.

        The store's own ids are returned when its acknowledgement carries them;
        otherwise the positions ``0..n-1`` stand in for them. Rows already written
        are not rolled back when the acknowledged count is wrong.
        """
        if not columns:
            raise ValidationError("no valid columns provided")
        rows = row_count(columns)
        data_size = sum(c.nbytes for c in columns)

        start = time.time()
        try:
            ack = self.store.write(self.collection, columns)
        except Exception:
            self._emit_error(start)
            raise
        duration_ms = (time.time() - start) * 1000

        if ack.insert_count != rows:
            self._emit_error(start)
            raise CountMismatchError(rows, ack.insert_count)
        if ack.ids and len(ack.ids) != rows:
            self._emit_error(start)
            raise CountMismatchError(rows, len(ack.ids))

        tags = operation_tags("insert", self.collection, STATUS_SUCCESS)
        self.metrics.emit(REQS, 1, tags)
        self.metrics.emit(DURATION, duration_ms, tags)
        self.metrics.emit(VECTORS, rows, tags)
        self.metrics.emit(DATA_SIZE, data_size, tags)
        self.metrics.emit(ERRORS, 0, tags)
        logger.debug(f"Inserted {rows} rows into {self.collection} in {duration_ms:.2f}ms")

        if ack.ids:
            return list(ack.ids)
        return list(range(rows))

    def _emit_error(self, start: float) -> None:
        tags = operation_tags("insert", self.collection, STATUS_ERROR)
        self.metrics.emit(ERRORS, 1, tags)
        self.metrics.emit(DURATION, (time.time() - start) * 1000, tags)
