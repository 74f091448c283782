"""Read-side persistence queries."""
