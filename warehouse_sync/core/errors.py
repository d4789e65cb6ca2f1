"""Error taxonomy for the sync engine.

Only startup/configuration errors are meant to escape an engine. Per-record and
per-cycle problems are logged (and audited) inside the engine loop.
"""


class SyncError(Exception):
    """Base class for all warehouse-sync errors."""


class ConfigurationError(SyncError):
    """Invalid table/sync configuration. Fatal at startup."""


class UnsupportedDialectError(ConfigurationError):
    """The source warehouse dialect has no partition expression."""


class MembershipError(SyncError):
    """The current node is missing from its own membership snapshot. Never retried."""
