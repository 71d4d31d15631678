"""
Blob storage for generated documents.

Paths are relative keys such as poa/<tenant>/<poa id>/<filename>; the
filesystem store maps them under STORAGE_ROOT.
"""

import os

from flask import current_app


class StorageError(Exception):
    """Raised when a blob cannot be written, read or deleted."""


class BlobStorage:
    """Interface used by the services layer."""

    def upload(self, path: str, content: bytes) -> str:
        raise NotImplementedError

    def read(self, path: str) -> bytes:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError


class FilesystemBlobStorage(BlobStorage):
    """Stores blobs as files beneath a root directory."""

    def __init__(self, root: str):
        self.root = os.path.abspath(root)

    def _full_path(self, path: str) -> str:
        full_path = os.path.abspath(os.path.join(self.root, path))
        if os.path.commonpath([self.root, full_path]) != self.root:
            raise StorageError(f'Path escapes storage root: {path}')
        return full_path

    def upload(self, path: str, content: bytes) -> str:
        full_path = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            with open(full_path, 'wb') as f:
                f.write(content)
        except OSError as e:
            raise StorageError(f'Failed to store {path}: {e}') from e
        return path

    def read(self, path: str) -> bytes:
        full_path = self._full_path(path)
        try:
            with open(full_path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise StorageError(f'Failed to read {path}: {e}') from e

    def delete(self, path: str) -> None:
        full_path = self._full_path(path)
        try:
            os.remove(full_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(f'Failed to delete {path}: {e}') from e

    def exists(self, path: str) -> bool:
        return os.path.isfile(self._full_path(path))


def init_storage(app, storage: BlobStorage = None):
    """Register the blob store on the app (defaults to the filesystem under STORAGE_ROOT)."""
    if storage is None:
        storage = FilesystemBlobStorage(app.config['STORAGE_ROOT'])
    app.extensions['poa_storage'] = storage
    return storage


def get_storage() -> BlobStorage:
    return current_app.extensions['poa_storage']
