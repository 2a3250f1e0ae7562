"""Durable storage: keyed documents, application state and backup backends."""

from posvault.storage.kv import JsonFileStore, KeyValueStore
from posvault.storage.state import StateStore

__all__ = ["JsonFileStore", "KeyValueStore", "StateStore"]
