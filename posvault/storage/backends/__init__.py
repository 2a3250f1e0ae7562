"""Backup destinations."""

from posvault.storage.backends.base import StorageBackend
from posvault.storage.backends.http import HttpObjectStoreBackend
from posvault.storage.backends.local import LocalBackend
from posvault.storage.backends.registry import (
    HTTP_BACKEND_ID,
    S3_BACKEND_ID,
    BackendRegistry,
    build_registry,
)
from posvault.storage.backends.s3 import S3Backend

__all__ = [
    "HTTP_BACKEND_ID",
    "S3_BACKEND_ID",
    "BackendRegistry",
    "HttpObjectStoreBackend",
    "LocalBackend",
    "S3Backend",
    "StorageBackend",
    "build_registry",
]
