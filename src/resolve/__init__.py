"""Dependency resolution: graph, resolved models and lockfile."""
