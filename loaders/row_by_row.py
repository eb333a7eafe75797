"""
Loader Strategy: Row by Row.

Issues one INSERT per parsed line. Slowest strategy, but a malformed line or a
row rejected by the store only costs that single row.
"""
import logging

from errors import RejectedRowError
from log_parser import stream_log_records

logger = logging.getLogger('botstats.loader.row_by_row')


class RowByRowLoader:
    """Inserts an entry for each line using individual insert statements."""

    name = 'row-by-row'

    def load(self, store, file_path):
        count = 0
        rejected = 0
        for record in stream_log_records(file_path):
            try:
                store.insert_entry(record)
            except RejectedRowError as e:
                rejected += 1
                logger.error(f"Row rejected by store ({record.timestamp} {record.ip}): {e}")
                continue
            count += 1

        if rejected:
            logger.warning(f"{rejected} row(s) rejected by the store")
        logger.debug(f"Inserted {count} rows one by one")
        return count
