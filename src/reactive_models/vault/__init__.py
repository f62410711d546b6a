"""Vault layer.

The vault is the single owner of cache entry state: a keyed map of
:class:`~reactive_models.vault.entry.CacheEntry` snapshots, the pure
mutators that derive new snapshots, and the eviction scheduler.
"""
