"""Error taxonomy shared by the resolution and recall components.

An ambiguous identity match is deliberately absent here: it is a normal
decision outcome (see ``identity_resolution.MatchOutcome``) that the caller
must act on, not a failure.
"""

from __future__ import annotations


class RecallError(Exception):
    """Base class for every error raised by relationship_recall."""


class ValidationError(RecallError):
    """Malformed input such as an empty name, query or bad vector."""


class NotFoundError(RecallError):
    """A referenced Person, Interaction or embedding does not exist."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ConflictError(RecallError):
    """Another match or merge holds the same key; re-read and retry."""


class DependencyUnavailable(RecallError):
    """The embedding collaborator timed out or failed."""


class IntegrityError(RecallError):
    """A multi-step write was rolled back; nothing from it was committed.

    ``step`` names the stage that failed so the caller can log it and retry.
    Retrying a merge is safe because already-absorbed ids are skipped.
    """

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
