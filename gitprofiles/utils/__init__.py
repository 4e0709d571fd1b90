"""Shared helpers: metrics, filesystem primitives, paths, logging."""
