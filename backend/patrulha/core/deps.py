"""Shared FastAPI dependency functions."""

from patrulha.core.database import DatabaseConnection
from patrulha.services.property_store import PostgresPropertyStore, PropertyStore


def get_property_store() -> PropertyStore:
    """Return an unconnected :class:`PropertyStore` for one request.

    The import stream connects it when the first row starts and closes it after
    the last one, so the connection outlives the request handler.
    """
    return PostgresPropertyStore(DatabaseConnection.from_settings())
