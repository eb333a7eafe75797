"""
Loader Strategy: Bulk File Transfer.

Hands the whole file to the store's native bulk loader in one operation
(LOAD DATA LOCAL INFILE on MySQL). No client-side parsing or validation is
done, so there is no per-line error isolation: a malformed section aborts the
whole transfer with BulkLoadError and the load scope is rolled back. Around
ten times faster than the other two strategies on MySQL.
"""
import logging
import os

from log_parser import DEFAULT_BULK_FORMAT

logger = logging.getLogger('botstats.loader.bulk_file_transfer')


class BulkFileTransferLoader:
    """Loads the whole file with the store's bulk mechanism."""

    name = 'bulk-file-transfer'

    def __init__(self, bulk_format=DEFAULT_BULK_FORMAT):
        self.bulk_format = bulk_format

    def load(self, store, file_path):
        # The MySQL client would report a missing local file as a server error
        if not os.path.isfile(file_path):
            raise FileNotFoundError(f"File not found {file_path}")
        if not os.access(file_path, os.R_OK):
            raise PermissionError(f"File not readable {file_path}")

        logger.info(f"Transferring {file_path} with the store's bulk loader ({store.dialect_name})")
        return store.bulk_load_file(os.path.abspath(file_path), self.bulk_format)
