"""
Exception hierarchy for the recovery job.

Strategy-level failures are reported through outcomes, not exceptions; these
types cover configuration problems and errors that must abort a store or the
whole batch.
"""


class RecoveryError(Exception):
    """Base class for recovery errors."""


class ConfigurationError(RecoveryError):
    """Required configuration (credentials, URLs) is missing or invalid."""


class NoActiveStoresError(ConfigurationError):
    """No active store configuration exists, so the batch cannot run."""


class LocalStoreError(RecoveryError):
    """The local order store could not answer a query."""


class BookmarkStoreError(RecoveryError):
    """No bookmark store accepted a write."""
