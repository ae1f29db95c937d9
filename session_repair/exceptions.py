"""
Shared exceptions for opencode-session-repair.

Domain-specific exceptions used across services.

Exception Hierarchy:
    SessionRepairError (base)
    ├── SessionResolutionError (lookup/resolution failures)
    │   ├── SessionNotFoundError (no session with that id)
    │   └── AmbiguousSessionError (prefix matches multiple sessions)
    ├── NoCorruptionFoundError (terminal success, nothing to do)
    ├── UnrepairableError (no safe plan for the requested strategy)
    ├── SessionLockedError (another repair/restore holds the session)
    ├── BackupError (snapshot lifecycle failures)
    │   ├── BackupFailedError (snapshot could not be written, store untouched)
    │   └── BackupNotFoundError (restore/prune of an unknown backup id)
    ├── VerificationFailedError (post-apply checks failed, triggers rollback)
    ├── RolledBackError (mutation or verification failed, store restored)
    └── StoreIOError (read/write/delete failure in the document store)
"""

from __future__ import annotations


class SessionRepairError(Exception):
    """Base exception for all opencode-session-repair errors."""


class SessionResolutionError(SessionRepairError):
    """Base exception for session lookup and resolution failures."""


class SessionNotFoundError(SessionResolutionError):
    """Raised when no session document exists for the given id."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f'Session not found: {session_id}')


class AmbiguousSessionError(SessionResolutionError):
    """Raised when a session ID prefix matches multiple sessions."""

    def __init__(self, prefix: str, matches: list[str]) -> None:
        self.prefix = prefix
        self.matches = matches
        matches_str = '\n  '.join(matches[:10])
        if len(matches) > 10:
            matches_str += f'\n  ... and {len(matches) - 10} more'
        super().__init__(
            f"Session ID prefix '{prefix}' is ambiguous. Matches {len(matches)} sessions:\n  {matches_str}\n\n"
            f'Please provide a more specific session ID prefix.'
        )


class NoCorruptionFoundError(SessionRepairError):
    """Raised when a session has nothing to repair. Not a failure."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f'No corruption found in session {session_id}')


class UnrepairableError(SessionRepairError):
    """Raised when no safe plan exists for the requested strategy. Session left untouched."""

    def __init__(self, session_id: str, reason: str) -> None:
        self.session_id = session_id
        self.reason = reason
        super().__init__(f'Session {session_id} is unrepairable: {reason}')


class SessionLockedError(SessionRepairError):
    """Raised when another repair or restore currently holds the session."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f'Session {session_id} is locked by another repair in progress. Retry later.')


class BackupError(SessionRepairError):
    """Base exception for backup snapshot failures."""


class BackupFailedError(BackupError):
    """Raised when the pre-mutation snapshot could not be written. Store untouched."""

    def __init__(self, session_id: str, cause: BaseException) -> None:
        self.session_id = session_id
        self.cause = cause
        super().__init__(f'Backup failed for session {session_id}, repair aborted before any change: {cause}')


class BackupNotFoundError(BackupError):
    """Raised when a backup id does not exist."""

    def __init__(self, backup_id: str) -> None:
        self.backup_id = backup_id
        super().__init__(f'Backup not found: {backup_id}')


class VerificationFailedError(SessionRepairError):
    """Raised inside a repair transaction when the applied plan did not verify."""

    def __init__(self, session_id: str, problems: list[str]) -> None:
        self.session_id = session_id
        self.problems = problems
        super().__init__(f'Verification failed for session {session_id}: {"; ".join(problems)}')


class RolledBackError(SessionRepairError):
    """Raised when apply or verification failed and the snapshot was restored."""

    def __init__(self, session_id: str, backup_id: str, cause: str, verification_failed: bool = False) -> None:
        self.session_id = session_id
        self.backup_id = backup_id
        self.cause = cause
        self.verification_failed = verification_failed
        super().__init__(
            f'Repair of session {session_id} failed and was rolled back (store restored from {backup_id}): {cause}'
        )


class StoreIOError(SessionRepairError):
    """Raised when the document store fails to read, write or delete a document."""

    def __init__(self, operation: str, path: str, cause: BaseException, session_id: str | None = None) -> None:
        self.operation = operation
        self.path = path
        self.cause = cause
        self.session_id = session_id  # Filled in by the repair service when raised below it
        super().__init__(operation, path, cause)

    def __str__(self) -> str:
        session = f' (session {self.session_id})' if self.session_id else ''
        return f'Failed to {self.operation} {self.path}{session}: {self.cause}'
