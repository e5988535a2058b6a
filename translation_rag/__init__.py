"""Hybrid retrieval and ranking engine for Swedish to Romani translation memory."""

__version__ = "0.1.0"
