"""
fcff_errors.py
Error taxonomy shared by the extractors, the reconciler and the engines.

Every error carries a message fit to show a user; the HTTP layer returns it
verbatim, so no stack details belong in here.
"""

from typing import Iterable, List


class FCFFError(Exception):
    """Base class for every failure the analyzer reports on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedFormatError(FCFFError):
    def __init__(self, file_type: str, detail: str = ""):
        self.file_type = file_type or "unknown"
        msg = f"Unsupported file type: {self.file_type}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class MalformedInputError(FCFFError):
    def __init__(self, source: str, detail: str):
        self.source = source
        self.detail = detail
        super().__init__(f"Could not parse {source} file: {detail}")


class MissingMetricsError(FCFFError):
    """Reconciliation failed after every estimator was tried."""

    def __init__(self, missing: Iterable[str]):
        self.missing: List[str] = list(missing)
        super().__init__(
            "Missing required financial metrics: " + ", ".join(self.missing)
        )


class InvalidAssumptionError(FCFFError):
    pass
