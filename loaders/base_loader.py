"""
Interface shared by the log loader strategies.
"""
from typing import Protocol, runtime_checkable


@runtime_checkable
class LoaderStrategy(Protocol):
    """
    Loads an access log file into the entries store.

    Implementations form a closed set registered in loaders.LOADER_STRATEGIES;
    they differ only in speed and in how finely failures are isolated.
    """

    name: str

    def load(self, store, file_path):
        """
        Loads the content of file_path into the log_entries table.

        The caller owns the transaction: nothing is committed here.

        Args:
            store (log_store.LogStore): Open store to write into.
            file_path (str): Path of the access log file.

        Returns:
            int: Number of rows loaded.

        Raises:
            OSError: The file cannot be read.
            StoreError: The store failed in a way that cannot be isolated to a row.
        """
        ...
