"""Pack signing - deterministic canonicalization, signing and verification of pack directories."""

__version__ = "0.4.0"
