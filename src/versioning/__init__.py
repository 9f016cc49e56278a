"""Version requirement parsing and matching."""
