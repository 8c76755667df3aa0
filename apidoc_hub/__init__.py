# apidoc_hub/__init__.py
"""API Documentation Hub: Service discovery, spec caching and serving."""

__version__ = "1.0.0"
