"""Logging configuration for the extraction pipeline."""

from .setup import document_scope, setup_logging

__all__ = ["document_scope", "setup_logging"]
