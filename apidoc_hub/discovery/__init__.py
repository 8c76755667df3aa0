# apidoc_hub/discovery/__init__.py
"""Service discovery: annotation extraction and Discovery Record reconciliation."""
from .annotations import extract_descriptor
from .reconciler import Reconciler, ReconcilerState

__all__ = ["Reconciler", "ReconcilerState", "extract_descriptor"]
