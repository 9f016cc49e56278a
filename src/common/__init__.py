"""Shared helpers: errors, logging, HTTP, retries and task fan-out."""
