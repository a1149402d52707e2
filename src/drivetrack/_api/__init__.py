"""Endpoint wrappers for the backend's HTTP collaborators."""
