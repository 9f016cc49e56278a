"""npm registry support.

- models.py: packument and version metadata views
- client.py: metadata fetches and tarball streams
"""
