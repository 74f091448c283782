"""Capacity matrix pipeline services."""
