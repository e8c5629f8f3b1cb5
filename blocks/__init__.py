"""Blocks: conversational HTML page and data-report builder."""

__version__ = "0.1.0"
