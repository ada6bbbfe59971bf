"""
Furniview backend package.

This module provides a FastAPI application exposing REST endpoints for
companies, their furniture models, and the asynchronous conversion of
uploaded 3D files to GLTF.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
