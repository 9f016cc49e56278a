"""Content-addressed package store."""
