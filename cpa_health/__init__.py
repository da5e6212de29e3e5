"""Core (UI-agnostic) CPA funding vs. public health logic.

This package contains:
- data loading (CSV -> typed town records, per-capita derivation)
- correlation and summary engines
- filter normalization
- view compute functions (JSON-serializable payloads)
"""
