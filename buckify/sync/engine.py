"""Reconcile freshly generated BUCK text with what is on disk."""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath
from typing import Callable, Iterable

from buckify.diagnostics import Diagnostics
from buckify.errors import ConflictError, SyncIOError
from buckify.models import FileResult, SyncOutcome, SyncReport
from buckify.sync.atomic import atomic_write_text
from buckify.sync.baseline import BaselineStore
from buckify.sync.regions import (
    RegionError,
    find_region,
    fingerprint,
    normalize,
    replace_region,
    strip_region,
)

logger = logging.getLogger(__name__)

# Called as on_file(index, total, rel_path) before each file is processed.
FileCallback = Callable[[int, int, str], None]


class SyncEngine:
    """Apply generated regions file by file.

    Each file is decided on its own: a conflict or I/O failure in one file
    is recorded in the report and the remaining files still go through.
    """

    def __init__(
        self,
        workspace_root: Path,
        baseline: BaselineStore,
        diagnostics: Diagnostics | None = None,
        force: bool = False,
        prune_root: str | None = None,
        writer: Callable[[Path, str], None] = atomic_write_text,
    ):
        self.workspace_root = workspace_root
        self.baseline = baseline
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.force = force
        self.prune_root = PurePosixPath(prune_root) if prune_root else None
        self.writer = writer

    def stale(self, generated: Iterable[str]) -> list[str]:
        """Files recorded in the baseline that the current pass no longer produces."""
        produced = set(generated)
        return [rel for rel in self.baseline.paths() if rel not in produced]

    def sync(
        self,
        files: dict[str, str],
        prune: bool = False,
        on_file: FileCallback | None = None,
    ) -> SyncReport:
        """Write every ``rel_path -> region body`` pair, then optionally prune."""
        report = SyncReport()
        stale = self.stale(files) if prune else []
        total = len(files) + len(stale)

        try:
            for index, rel in enumerate(sorted(files)):
                if on_file is not None:
                    on_file(index, total, rel)
                report.results.append(self._guarded(rel, lambda: self.sync_file(rel, files[rel])))

            for offset, rel in enumerate(stale):
                if on_file is not None:
                    on_file(len(files) + offset, total, rel)
                report.results.append(self._guarded(rel, lambda: self.prune_file(rel)))
        finally:
            # Files already written must stay recorded even if a later one blows up.
            self.baseline.save()
        return report

    def _guarded(self, rel: str, action: Callable[[], FileResult]) -> FileResult:
        path = Path(rel)
        try:
            return action()
        except ConflictError as e:
            self.diagnostics.warn("conflict", str(e), subject=rel)
            return FileResult(path, SyncOutcome.CONFLICT, str(e))
        except SyncIOError as e:
            self.diagnostics.error("io", str(e), subject=rel)
            return FileResult(path, SyncOutcome.FAILED, str(e))
        except OSError as e:
            err = SyncIOError(path, e)
            self.diagnostics.error("io", str(err), subject=rel)
            return FileResult(path, SyncOutcome.FAILED, str(err))

    # ── One file ──────────────────────────────────────────────

    def _read(self, rel: str, path: Path) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise ConflictError(Path(rel), f"file is not valid UTF-8 ({e.reason} at byte {e.start})") from e

    def _write(self, rel: str, path: Path, text: str) -> None:
        try:
            self.writer(path, text)
        except OSError as e:
            raise SyncIOError(Path(rel), e) from e

    def sync_file(self, rel: str, body: str) -> FileResult:
        body = normalize(body)
        path = self.workspace_root / rel
        current = self._read(rel, path)
        state = self.baseline.get(rel)

        if current is None:
            self._write(rel, path, replace_region(None, body))
            self.baseline.record(rel, body)
            logger.info("Created %s", rel)
            return FileResult(Path(rel), SyncOutcome.APPLIED, "created")

        try:
            region = find_region(current)
        except RegionError as e:
            if not self.force:
                raise ConflictError(Path(rel), str(e)) from e
            region = None

        if self.force:
            if region is not None and region.body == body:
                self.baseline.record(rel, body)
                return FileResult(Path(rel), SyncOutcome.UNCHANGED)
            self._write(rel, path, replace_region(current if region is not None else None, body))
            self.baseline.record(rel, body)
            logger.info("Overwrote %s", rel)
            return FileResult(Path(rel), SyncOutcome.APPLIED, "forced")

        if region is None:
            # Unmarked file: only take it over when it already holds exactly our output.
            if normalize(current) == body:
                self._write(rel, path, replace_region(None, body))
                self.baseline.record(rel, body)
                return FileResult(Path(rel), SyncOutcome.APPLIED, "adopted")
            raise ConflictError(Path(rel), "file exists without generated-region markers")

        if state is None:
            if region.body == body:
                self.baseline.record(rel, body)
                return FileResult(Path(rel), SyncOutcome.UNCHANGED, "adopted")
            raise ConflictError(Path(rel), "generated region has no recorded baseline")

        if fingerprint(region.body) != state.fingerprint:
            raise ConflictError(Path(rel))

        if region.body == body:
            return FileResult(Path(rel), SyncOutcome.UNCHANGED)

        self._write(rel, path, replace_region(current, body))
        self.baseline.record(rel, body)
        logger.info("Updated %s", rel)
        return FileResult(Path(rel), SyncOutcome.APPLIED)

    def prune_file(self, rel: str) -> FileResult:
        path = self.workspace_root / rel
        current = self._read(rel, path)
        state = self.baseline.get(rel)

        if current is None:
            self.baseline.forget(rel)
            return FileResult(Path(rel), SyncOutcome.REMOVED, "already gone")

        try:
            region = find_region(current)
        except RegionError as e:
            raise ConflictError(Path(rel), str(e)) from e
        if region is None:
            raise ConflictError(Path(rel), "stale file lost its generated-region markers")
        if not self.force and (state is None or fingerprint(region.body) != state.fingerprint):
            raise ConflictError(Path(rel), "stale generated region was modified by hand")

        if region.has_user_content:
            self._write(rel, path, strip_region(region))
            logger.info("Removed generated region from %s", rel)
        else:
            try:
                path.unlink()
            except OSError as e:
                raise SyncIOError(Path(rel), e) from e
            logger.info("Removed %s", rel)
            self._remove_empty_dirs(path.parent)
        self.baseline.forget(rel)
        return FileResult(Path(rel), SyncOutcome.REMOVED)

    def _remove_empty_dirs(self, directory: Path) -> None:
        if self.prune_root is None:
            return
        root = (self.workspace_root / self.prune_root).resolve()
        current = directory.resolve()
        while current != root and root in current.parents:
            try:
                if any(current.iterdir()):
                    return
                current.rmdir()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.debug("cannot remove %s: %s", current, e)
                return
            current = current.parent
