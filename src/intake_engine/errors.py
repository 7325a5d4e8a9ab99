"""Exception types raised across the intake SDK.

Invalid transitions (e.g. stepping back from the first question) are plain
``ValueError`` so that callers and the HTTP layer can handle them the same
way as any other bad request.  The classes below cover collaborators that
may fail for reasons outside the caller's control.
"""


class StorageError(Exception):
    """A storage backend could not read or write (disabled, quota, DB down)."""


class ResponderError(Exception):
    """The external chat responder failed to produce a reply."""


class MutationError(Exception):
    """A remote onboarding mutation failed at the transport or payload level."""

    def __init__(self, message: str, *, step: str | None = None) -> None:
        super().__init__(message)
        self.step = step
