"""
issync: Bidirectional sync between GitHub issues and local markdown files.

This package keeps a directory of markdown issue files in step with a
GitHub repository, optionally including GitHub Projects v2 custom fields,
and detects issues that were edited on both sides since the last sync.
"""

__version__ = "0.3.0"
