"""Exceptions raised by fitplan."""


class FitplanError(Exception):
    """Base class for fitplan errors."""


class RemoteUnavailableError(FitplanError):
    """The remote data service could not be reached or rejected the call."""

    def __init__(self, message: str, status_code: "int | None" = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteWriteError(FitplanError):
    """An online write reached the local cache but not the remote service.

    This is the only error the orchestrator propagates to its caller, so the
    user can be warned that a change may not have been persisted remotely.
    """

    def __init__(self, collection: str, owner_id: str, cause: Exception):
        super().__init__(f"Remote write to {collection} for {owner_id} failed: {cause}")
        self.collection = collection
        self.owner_id = owner_id
        self.cause = cause


class UnsupportedSyncActionError(FitplanError):
    """A queued item names a (collection, action) pair the reconciler cannot apply."""

    def __init__(self, collection: str, action: str):
        super().__init__(f"Unsupported sync action {action!r} for collection {collection!r}")
        self.collection = collection
        self.action = action


class StorageBackendError(FitplanError):
    """The persistent key/value store failed (quota, permission, corruption)."""
