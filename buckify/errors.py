"""Exception hierarchy."""

from __future__ import annotations

from pathlib import Path


class BuckifyError(Exception):
    """Base class for all errors raised by buckify."""


class MetadataError(BuckifyError):
    """`cargo metadata` could not be run or its output could not be parsed."""


class PredicateEvaluationIssue(BuckifyError):
    """A target predicate could not be evaluated precisely."""

    def __init__(self, predicate: str, reason: str):
        super().__init__(f"{reason}: {predicate!r}")
        self.predicate = predicate
        self.reason = reason


class PredicateSyntaxError(PredicateEvaluationIssue):
    pass


class UnknownCfgKeyError(PredicateEvaluationIssue):
    def __init__(self, predicate: str, key: str):
        super().__init__(predicate, f"unknown cfg key `{key}`")
        self.key = key


class ConflictError(BuckifyError):
    """The generated region of a file was edited since we last wrote it."""

    def __init__(self, path: Path, reason: str = "generated region was modified by hand"):
        super().__init__(f"{path}: {reason}")
        self.path = path


class SyncIOError(BuckifyError):
    """Writing or renaming an output file failed."""

    def __init__(self, path: Path, cause: OSError):
        super().__init__(f"{path}: {cause}")
        self.path = path
        self.cause = cause


class ConfigError(BuckifyError):
    pass


class LockError(BuckifyError):
    pass


class ManifestError(BuckifyError):
    pass
