"""
Loader Strategy: Batched.

Parses every line like the row-by-row strategy but buffers the records and
submits them in one executemany call at end of file.

If the store rejects the batch, what survives is store-dependent: SQLite keeps
the rows submitted before the failing one, MySQL's multi-row INSERT keeps none.
The returned count always reflects the rows actually present in the open
transaction, never the rows attempted.
"""
import logging

from errors import RejectedRowError
from log_parser import stream_log_records

logger = logging.getLogger('botstats.loader.batched')


class BatchedLoader:
    """Buffers all parsed lines and inserts them with one batch submission."""

    name = 'batched'

    def load(self, store, file_path):
        batch = list(stream_log_records(file_path))
        if not batch:
            logger.warning(f"No valid entries to submit from {file_path}")
            return 0

        before = store.count_entries()
        try:
            loaded = store.insert_entries(batch)
        except RejectedRowError as e:
            loaded = store.count_entries() - before
            logger.error(f"Batch submission rejected by store: {e}")
            logger.warning(f"{loaded} of {len(batch)} batched rows kept by the store")
            return loaded

        logger.debug(f"Batch of {len(batch)} rows submitted, {loaded} reported affected")
        return loaded
