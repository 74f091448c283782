"""Practice forecast backend: capacity matrix pipeline service."""
