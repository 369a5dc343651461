"""Composable, context-aware, pull-based streaming pipelines: sources, transforms and sinks."""

__version__ = "0.1.0"

__all__ = ["context", "core", "iterable", "sink", "transform"]