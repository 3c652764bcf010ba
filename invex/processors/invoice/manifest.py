"""
Run Manifest

Handoff file between the render and extract stages. Persisting it lets the
two stages retry independently: a retried extraction re-reads the manifest
instead of re-rendering the PDF.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from invex.exceptions import ManifestError
from invex.storage.filesystem_storage import TempStorage

logger = logging.getLogger(__name__)


@dataclass
class RunManifest:
    """Ordered rendered-image paths plus the raw extraction JSON location"""
    invoice_id: int
    images: List[str] = field(default_factory=list)
    parsed_path: Optional[str] = None

    def to_dict(self):
        return {
            'invoice_id': self.invoice_id,
            'images': list(self.images),
            'parsed_path': self.parsed_path
        }


class ManifestStore:
    """Reads and writes run manifests in temp storage"""

    def __init__(self, storage: TempStorage):
        self.storage = storage

    def save(self, manifest: RunManifest) -> str:
        path = self.storage.manifest_path(manifest.invoice_id)
        self.storage.write_json(path, manifest.to_dict())
        logger.debug(f"Wrote manifest for invoice {manifest.invoice_id}: {path}")
        return str(path)

    def load(self, invoice_id: int) -> RunManifest:
        """
        Load the manifest for an invoice.

        Raises:
            ManifestError: If the file is missing, unreadable, or lists no images
        """
        path = self.storage.manifest_path(invoice_id)

        if not path.exists():
            raise ManifestError(f"Image manifest not found for invoice {invoice_id}", invoice_id=invoice_id)

        try:
            data = self.storage.read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            raise ManifestError(
                f"Corrupt image manifest for invoice {invoice_id}: {e}", invoice_id=invoice_id
            ) from e

        # A bare list is the legacy shape: images only
        if isinstance(data, list):
            data = {'images': data}

        images = data.get('images') if isinstance(data, dict) else None
        if not isinstance(images, list) or not images or not all(isinstance(p, str) for p in images):
            raise ManifestError(f"Invalid or empty image manifest for invoice {invoice_id}", invoice_id=invoice_id)

        return RunManifest(
            invoice_id=invoice_id,
            images=images,
            parsed_path=data.get('parsed_path') or str(self.storage.parsed_path(invoice_id))
        )

    def load_if_present(self, invoice_id: int) -> Optional[RunManifest]:
        """Best-effort load used by cleanup; never raises for bad manifests"""
        try:
            return self.load(invoice_id)
        except ManifestError as e:
            logger.debug(f"No usable manifest for invoice {invoice_id}: {e}")
            return None
