"""
Exception hierarchy for sync, catalog and key-revision failures.

Unsupported providers and rejected credentials stop a sync run and mark the
account as errored. A report without an exam id is skipped with a warning.
Conflicts are reported to the caller as a distinct outcome.
"""


class SyncError(Exception):
    """Base class for errors raised by the sync and catalog services."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message or self.__class__.__name__


class MissingExamIdError(SyncError):
    def __init__(self, title: str = ""):
        label = f" '{title}'" if title else ""
        super().__init__(f"Exam{label} has no external exam id")


class UnsupportedProviderError(SyncError):
    def __init__(self, provider: str):
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider


class CredentialError(SyncError):
    """Raised by extraction adapters when the portal rejects a login."""


class SyncConflictError(SyncError):
    def __init__(self, user_id: str, provider: str):
        super().__init__(f"Sync already in progress for {user_id} on {provider}")
        self.user_id = user_id
        self.provider = provider


class InvalidKeyError(SyncError):
    pass


class InvalidMarkingSchemeError(SyncError):
    pass
