"""
API Routers package.
"""

from . import jobs, workflow

__all__ = ["jobs", "workflow"]
