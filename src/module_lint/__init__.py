"""Module validation engine.

Five independent static passes over the ``modules/`` plugin tree:
manifests, XML well-formedness, duplicate record IDs, unsafe SQL
construction, and abort macros in non-test code.
"""

__version__ = "1.0.0"
