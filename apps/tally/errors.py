from __future__ import annotations


class TallyError(Exception):
    """
    Base class for saga/step failures.

    step: which saga step failed (resolve|stage|commit|reconcile|read)
    version_id: the version id the step was targeting, if known
    """

    step = "unknown"

    def __init__(self, message: str, *, version_id=None, step: str | None = None):
        super().__init__(message)
        self.version_id = version_id
        if step is not None:
            self.step = step

    def as_dict(self) -> dict:
        return {
            "message": str(self),
            "step": self.step,
            "version_id": str(self.version_id) if self.version_id else None,
        }


class ResolveError(TallyError):
    step = "resolve"


class LedgerReplaceError(TallyError):
    step = "stage"


class AggregateWriteError(TallyError):
    step = "commit"


class MigrationError(TallyError):
    step = "reconcile"


class StaleVersionError(TallyError):
    step = "read"
