"""Cache, load coordination and notification layer.

This package is the single source of truth for cached resource state. Only
:class:`~pydatasync.store.coordinator.LoadCoordinator` writes the cache;
every other component reads snapshots.
"""
