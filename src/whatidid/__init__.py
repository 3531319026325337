"""
whatidid - a local, offline knowledge-document store.

Pages are organized into spaces, typed (decision, architecture, runbook, ...)
and optionally structured into named sections. Everything lives in a single
SQLite file with an FTS5 index kept in sync by triggers, so several agents can
share one knowledge base on the same machine.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("whatidid")
except PackageNotFoundError:
    __version__ = "0.3.0"
