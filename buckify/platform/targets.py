"""Supported target triples and platform-exclusive crates."""

from __future__ import annotations

from buckify.models import Os

# Tier-1 host platforms (plus x86_64-apple-darwin) used for cfg evaluation.
SUPPORTED_TARGETS: tuple[tuple[Os, str], ...] = (
    (Os.MACOS, "aarch64-apple-darwin"),
    (Os.MACOS, "x86_64-apple-darwin"),
    (Os.WINDOWS, "aarch64-pc-windows-msvc"),
    (Os.WINDOWS, "x86_64-pc-windows-msvc"),
    (Os.WINDOWS, "x86_64-pc-windows-gnu"),
    (Os.WINDOWS, "i686-pc-windows-msvc"),
    (Os.LINUX, "aarch64-unknown-linux-gnu"),
    (Os.LINUX, "x86_64-unknown-linux-gnu"),
    (Os.LINUX, "i686-unknown-linux-gnu"),
)

SUPPORTED_TRIPLES: tuple[str, ...] = tuple(triple for _, triple in SUPPORTED_TARGETS)

# Crates that cannot even be resolved off their native platform.
PACKAGE_PLATFORMS: dict[str, frozenset[Os]] = {
    "hyper-named-pipe": frozenset({Os.WINDOWS}),
    "system-configuration": frozenset({Os.MACOS}),
    "windows-future": frozenset({Os.WINDOWS}),
    "windows": frozenset({Os.WINDOWS}),
    "winreg": frozenset({Os.WINDOWS}),
}


def os_for_triple(triple: str) -> Os | None:
    for os_, t in SUPPORTED_TARGETS:
        if t == triple:
            return os_
    return None


def lookup_platforms(package_name: str) -> frozenset[Os] | None:
    return PACKAGE_PLATFORMS.get(package_name)


def buck_labels(oses: frozenset[Os] | set[Os]) -> set[str]:
    return {os_.buck_label for os_ in oses}
