"""
Tests for the run manifest and TempFileCleaner
"""

import json

import pytest

from invex.exceptions import ManifestError
from invex.processors.invoice.cleanup import TempFileCleaner
from invex.processors.invoice.manifest import ManifestStore, RunManifest


@pytest.fixture
def manifests(storage):
    return ManifestStore(storage)


def write_run_artifacts(storage, manifests, invoice_id, pages=2):
    storage.ensure_storage_exists()
    images = []
    for n in range(1, pages + 1):
        path = storage.image_path(invoice_id, n)
        path.write_bytes(b'jpeg')
        images.append(str(path))

    parsed_path = storage.parsed_path(invoice_id)
    storage.write_json(parsed_path, {'vendor': None})
    manifests.save(RunManifest(invoice_id=invoice_id, images=images, parsed_path=str(parsed_path)))
    return images


class TestManifestStore:
    """Tests for the render/extract handoff file"""

    def test_round_trip(self, storage, manifests):
        """Saved manifests load back with the same images"""
        manifest = RunManifest(invoice_id=5, images=['/tmp/a.jpg', '/tmp/b.jpg'], parsed_path='/tmp/p.json')
        path = manifests.save(manifest)

        assert path.endswith('invoice_5_manifest.json')
        assert manifests.load(5) == manifest

    def test_legacy_list_manifest(self, storage, manifests):
        """A bare JSON list of image paths is still accepted"""
        storage.write_json(storage.manifest_path(5), ['/tmp/a.jpg'])

        manifest = manifests.load(5)
        assert manifest.images == ['/tmp/a.jpg']
        assert manifest.parsed_path == str(storage.parsed_path(5))

    def test_missing_manifest(self, manifests):
        with pytest.raises(ManifestError) as exc_info:
            manifests.load(5)
        assert 'not found' in str(exc_info.value)

    def test_corrupt_manifest(self, storage, manifests):
        storage.ensure_storage_exists()
        storage.manifest_path(5).write_text('{"images": [')

        with pytest.raises(ManifestError) as exc_info:
            manifests.load(5)
        assert 'Corrupt' in str(exc_info.value)

    def test_empty_manifest(self, storage, manifests):
        storage.write_json(storage.manifest_path(5), {'images': []})

        with pytest.raises(ManifestError):
            manifests.load(5)

    def test_load_if_present(self, manifests):
        """Best-effort loading returns None instead of raising"""
        assert manifests.load_if_present(5) is None


class TestTempFileCleaner:
    """Tests for temp file cleanup"""

    def test_deletes_all_run_artifacts(self, storage, manifests):
        """Images, manifest and parsed JSON are removed and counted"""
        images = write_run_artifacts(storage, manifests, 1, pages=3)

        deleted = TempFileCleaner(storage, manifests).cleanup(1)

        assert deleted == 5
        assert storage.list_artifacts(1) == []
        assert not any(storage.exists(p) for p in images)

    def test_idempotent(self, storage, manifests):
        """A second cleanup deletes nothing and does not fail"""
        write_run_artifacts(storage, manifests, 1)
        cleaner = TempFileCleaner(storage, manifests)

        cleaner.cleanup(1)
        assert cleaner.cleanup(1) == 0

    def test_other_invoices_untouched(self, storage, manifests):
        """Only the given invoice's files are removed, even with a shared id prefix"""
        write_run_artifacts(storage, manifests, 1)
        write_run_artifacts(storage, manifests, 10)

        TempFileCleaner(storage, manifests).cleanup(1)

        assert len(storage.list_artifacts(10)) == 4

    def test_pages_without_manifest(self, storage, manifests):
        """Pages from a render that never wrote its manifest are still removed"""
        storage.ensure_storage_exists()
        storage.image_path(2, 1).write_bytes(b'jpeg')

        assert TempFileCleaner(storage).cleanup(2) == 1

    def test_corrupt_manifest_does_not_block_cleanup(self, storage, manifests):
        """A damaged manifest is deleted along with the pages"""
        write_run_artifacts(storage, manifests, 3)
        storage.manifest_path(3).write_text('not json')

        assert TempFileCleaner(storage, manifests).cleanup(3) == 4
        assert storage.list_artifacts(3) == []

    def test_nothing_to_clean(self, storage):
        """Cleaning an invoice without temp files returns zero"""
        assert TempFileCleaner(storage).cleanup(42) == 0
