import os
import json
import shutil
import logging
from typing import Any, Union
from pathlib import Path

logger = logging.getLogger(__name__)


class FileSystemStorage:
    """
    File system storage rooted at a base directory

    Keys are relative paths below ``base_path``; absolute keys and ``..``
    segments are rejected.
    """

    def __init__(self, base_path: Union[str, Path]):
        """
        Initialize filesystem storage

        Args:
            base_path: Base path for storage
        """
        self.base_path = Path(base_path).resolve()

    def ensure_storage_exists(self) -> None:
        """Ensure storage directory exists"""
        self.base_path.mkdir(parents=True, exist_ok=True)

    def get_path(self, key: str) -> Path:
        """
        Get full path for a storage key with path traversal protection

        Args:
            key: Storage key

        Returns:
            Full path

        Raises:
            ValueError: If path traversal is detected or key is invalid
        """
        if not key:
            raise ValueError("Storage key cannot be empty")

        if '..' in key or os.path.isabs(key):
            raise ValueError(f"Invalid storage key: {key} - path traversal detected")

        full_path = (self.base_path / os.path.normpath(key)).resolve()

        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            raise ValueError(f"Invalid storage key: {key} - path outside storage directory")

        return full_path

    def save_file(self, key: str, source: Union[str, Path]) -> Path:
        """Copy a local file into storage and return its full path"""
        self.ensure_storage_exists()
        target = self.get_path(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, target)
        return target

    def exists(self, path: Union[str, Path]) -> bool:
        return Path(path).is_file()

    def delete(self, path: Union[str, Path]) -> bool:
        """
        Delete a file

        Returns:
            True if a file was removed, False if it was already gone
        """
        try:
            Path(path).unlink()
            return True
        except FileNotFoundError:
            return False

    def write_json(self, path: Union[str, Path], data: Any) -> Path:
        """Write JSON atomically: readers never see a half-written file"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        return path

    def read_json(self, path: Union[str, Path]) -> Any:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)


class TempStorage(FileSystemStorage):
    """
    Per-run scratch space: rendered page images, manifests and the
    intermediate extraction JSON, all namespaced by invoice id.
    """

    def invoice_prefix(self, invoice_id: int) -> str:
        return f"invoice_{invoice_id}"

    def image_path(self, invoice_id: int, page_number: int) -> Path:
        return self.get_path(f"{self.invoice_prefix(invoice_id)}_page_{page_number}.jpg")

    def manifest_path(self, invoice_id: int) -> Path:
        return self.get_path(f"{self.invoice_prefix(invoice_id)}_manifest.json")

    def parsed_path(self, invoice_id: int) -> Path:
        return self.get_path(f"{self.invoice_prefix(invoice_id)}_parsed.json")

    def list_artifacts(self, invoice_id: int):
        """Every file currently on disk belonging to the invoice's runs"""
        if not self.base_path.exists():
            return []
        return sorted(self.base_path.glob(f"{self.invoice_prefix(invoice_id)}_*"))
