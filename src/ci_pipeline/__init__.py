"""Container-based CI pipeline for a Rust ERP workspace.

Every stage runs in an isolated container with named, persistent caches.
"""

__version__ = "1.0.0"
