"""Domain error types raised by the forecast pipeline."""

from __future__ import annotations


class ForecastError(Exception):
    """Base class for pipeline errors that map onto HTTP responses."""


class DataSourceError(ForecastError):
    """The task/staff/client data source could not be read."""

    def __init__(self, operation: str, message: str | None = None) -> None:
        self.operation = operation
        detail = message or "data source unavailable"
        super().__init__(f"{operation}: {detail}")


class ClientNotFoundError(ForecastError):
    def __init__(self, client_id: object) -> None:
        self.client_id = client_id
        super().__init__(f"Client {client_id} not found.")
