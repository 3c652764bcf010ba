"""
Temp file cleanup for finished runs.
"""

import logging
from pathlib import Path
from typing import Set

from invex.processors.invoice.manifest import ManifestStore
from invex.storage.filesystem_storage import TempStorage

logger = logging.getLogger(__name__)


class TempFileCleaner:
    """
    Removes an invoice's rendered images, manifest and intermediate JSON.

    Missing files are not an error, so running it twice is harmless.
    """

    def __init__(self, storage: TempStorage, manifest_store: ManifestStore = None):
        self.storage = storage
        self.manifest_store = manifest_store or ManifestStore(storage)

    def cleanup(self, invoice_id: int) -> int:
        """
        Delete every temp artifact of the invoice.

        Returns:
            Number of files actually deleted
        """
        targets: Set[Path] = set()

        manifest = self.manifest_store.load_if_present(invoice_id)
        if manifest is not None:
            targets.update(Path(p) for p in manifest.images)
            if manifest.parsed_path:
                targets.add(Path(manifest.parsed_path))

        targets.add(self.storage.manifest_path(invoice_id))
        targets.add(self.storage.parsed_path(invoice_id))

        # Pages written by a render that never produced a manifest
        targets.update(self.storage.list_artifacts(invoice_id))

        deleted = 0
        for path in sorted(targets):
            if self.storage.delete(path):
                deleted += 1

        logger.info(f"Cleanup completed for invoice {invoice_id}: {deleted} files deleted")
        return deleted
