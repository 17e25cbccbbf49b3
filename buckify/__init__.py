"""Generate Buck2 BUCK files from a Cargo workspace."""

__version__ = "0.3.0"
