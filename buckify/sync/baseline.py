"""Record of the region text last written to each generated file."""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError

from buckify.models import GeneratedFileState
from buckify.sync.atomic import atomic_write_text
from buckify.sync.regions import fingerprint

logger = logging.getLogger(__name__)

BASELINE_VERSION = 1


class BaselineEntry(BaseModel):
    fingerprint: str
    text: str


class BaselineFile(BaseModel):
    version: int = BASELINE_VERSION
    files: dict[str, BaselineEntry] = {}


class BaselineStore:
    """Baseline states keyed by workspace-relative POSIX path."""

    def __init__(self, path: Path | None = None):
        self.path = path
        self._states: dict[str, GeneratedFileState] = {}
        if path is not None:
            self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            data = BaselineFile.model_validate_json(self.path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable baseline %s: %s", self.path, e)
            return
        if data.version != BASELINE_VERSION:
            logger.warning("Ignoring baseline %s with unknown version %d", self.path, data.version)
            return
        for rel, entry in data.files.items():
            self._states[rel] = GeneratedFileState(text=entry.text, fingerprint=entry.fingerprint)

    def save(self) -> None:
        if self.path is None:
            return
        data = BaselineFile(files={
            rel: BaselineEntry(fingerprint=state.fingerprint, text=state.text)
            for rel, state in sorted(self._states.items())
        })
        atomic_write_text(self.path, data.model_dump_json(indent=2) + "\n")

    def get(self, rel: str) -> GeneratedFileState | None:
        return self._states.get(rel)

    def record(self, rel: str, text: str) -> GeneratedFileState:
        state = GeneratedFileState(text=text, fingerprint=fingerprint(text))
        self._states[rel] = state
        return state

    def forget(self, rel: str) -> None:
        self._states.pop(rel, None)

    def paths(self) -> list[str]:
        return sorted(self._states)

    def __contains__(self, rel: str) -> bool:
        return rel in self._states
