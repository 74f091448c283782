"""Core settings, logging, errors and events."""
