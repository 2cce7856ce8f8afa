"""Shared models, constants, and utilities for the CI pipeline.

This package is the foundational layer for ``ci_pipeline`` and
``module_lint``.  It has no dependency on either of them.
"""

__version__ = "1.0.0"
