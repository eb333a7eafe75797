"""
Log loader strategies, selected by name at configuration time.
"""
from errors import ConfigError

from .base_loader import LoaderStrategy
from .batched import BatchedLoader
from .bulk_file_transfer import BulkFileTransferLoader
from .row_by_row import RowByRowLoader

LOADER_STRATEGIES = {
    RowByRowLoader.name: RowByRowLoader,
    BatchedLoader.name: BatchedLoader,
    BulkFileTransferLoader.name: BulkFileTransferLoader,
}

DEFAULT_LOADER_STRATEGY = BulkFileTransferLoader.name


def get_loader(name):
    """
    Returns a new loader instance for the given strategy name.

    Raises:
        ConfigError: Unknown strategy name.
    """
    try:
        return LOADER_STRATEGIES[name]()
    except KeyError:
        choices = ', '.join(LOADER_STRATEGIES)
        raise ConfigError(f"Unknown loader strategy '{name}'. Possible values: {choices}") from None


__all__ = [
    'LoaderStrategy', 'RowByRowLoader', 'BatchedLoader', 'BulkFileTransferLoader',
    'LOADER_STRATEGIES', 'DEFAULT_LOADER_STRATEGY', 'get_loader',
]
