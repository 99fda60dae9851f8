"""
HTTP boundary for the media pipeline.
"""

from .server import create_app, run_server

__all__ = ["create_app", "run_server"]
