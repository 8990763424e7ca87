"""Course audio backend: catalog API, per-word audio completion and storage migration."""

__version__ = "0.1.0"
