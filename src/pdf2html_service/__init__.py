"""
PDF-to-HTML Conversion Service package.

This module provides a FastAPI application exposing the conversion REST
endpoints (`/convert`, `/status/{job_id}`, `/jobs`), a `requests` based
client that polls job progress, and a Streamlit front-end.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
