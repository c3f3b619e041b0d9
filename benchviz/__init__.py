"""
Benchmark visualization backend package.

This package hosts the session persistence layer (file and MongoDB backends
behind a multi-backend coordinator), the run comparison engine, and the
FastAPI server that exposes both to the dashboard frontend.
"""

from .__version__ import __session_schema_version__, __version__

__all__ = ["__version__", "__session_schema_version__"]
