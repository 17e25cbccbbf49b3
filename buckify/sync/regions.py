"""Generated regions inside BUCK files.

A generated region is delimited by two marker lines. Everything outside the
markers belongs to the user and is carried over verbatim.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

BEGIN_MARKER = "# @buckify-begin"
END_MARKER = "# @buckify-end"


class RegionError(ValueError):
    """Markers are unbalanced or repeated."""


@dataclass(frozen=True)
class Region:
    before: str
    body: str
    after: str

    @property
    def has_user_content(self) -> bool:
        return bool(self.before.strip() or self.after.strip())


def fingerprint(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize(body: str) -> str:
    body = body.replace("\r\n", "\n")
    return body if body.endswith("\n") or not body else body + "\n"


def find_region(text: str) -> Region | None:
    """Split ``text`` around its generated region, or None if it has no markers."""
    lines = text.replace("\r\n", "\n").splitlines(keepends=True)
    begins = [i for i, line in enumerate(lines) if line.rstrip("\n").strip() == BEGIN_MARKER]
    ends = [i for i, line in enumerate(lines) if line.rstrip("\n").strip() == END_MARKER]
    if not begins and not ends:
        return None
    if len(begins) != 1 or len(ends) != 1 or ends[0] < begins[0]:
        raise RegionError(
            f"expected one `{BEGIN_MARKER}` followed by one `{END_MARKER}`, "
            f"found {len(begins)} begin and {len(ends)} end marker(s)"
        )
    start, stop = begins[0], ends[0]
    return Region(
        before="".join(lines[:start]),
        body="".join(lines[start + 1:stop]),
        after="".join(lines[stop + 1:]),
    )


def wrap(body: str) -> str:
    return f"{BEGIN_MARKER}\n{normalize(body)}{END_MARKER}\n"


def replace_region(text: str | None, body: str) -> str:
    """Return ``text`` with its region replaced by ``body``.

    Without existing text or markers the result is just the wrapped region.
    """
    if text is None:
        return wrap(body)
    region = find_region(text)
    if region is None:
        return wrap(body)
    return region.before + wrap(body) + region.after


def strip_region(region: Region) -> str:
    """File text with the generated region removed."""
    after = region.after.lstrip("\n") if region.before.endswith("\n\n") else region.after
    return region.before + after
