"""Access to the external property store.

The store is shared with other writers and offers no uniqueness constraint on
(name, coordinates, city). ``find_duplicate`` followed by ``create_property``
is therefore not atomic: two imports racing on the same row can both pass the
duplicate check and both insert.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from psycopg import sql

from patrulha.core.database import DatabaseConnection
from patrulha.core.errors import StoreError, translate_db_error
from patrulha.models.auth import CallerProfile
from patrulha.services.field_coercer import parse_bool, parse_int, today_iso

logger = logging.getLogger(__name__)

PROPERTY_TYPE = "rural"

# Coerced field -> create_property_profile argument
PROFILE_ARGUMENTS = (
    ("name", "property_name"),
    ("cidade", "property_cidade"),
    ("bairro", "property_bairro"),
    ("owner_name", "property_owner_name"),
    ("owner_phone", "property_owner_phone"),
    ("owner_rg", "property_owner_rg"),
    ("equipe", "property_equipe"),
    ("numero_placa", "property_numero_placa"),
    ("description", "property_description"),
    ("contact_name", "property_contact_name"),
    ("contact_phone", "property_contact_phone"),
    ("contact_observations", "property_contact_observations"),
    ("observations", "property_observations"),
    ("activity", "property_activity"),
    ("wifi_password", "property_wifi_password"),
)


def build_profile_params(
    data: Dict[str, Any],
    latitude: float,
    longitude: float,
    caller: CallerProfile,
) -> Dict[str, Any]:
    """Arguments for ``create_property_profile`` from a validated row."""
    params: Dict[str, Any] = {
        argument: data.get(field) for field, argument in PROFILE_ARGUMENTS
    }
    params.update(
        property_latitude=latitude,
        property_longitude=longitude,
        property_has_cameras=_as_bool(data.get("has_cameras")),
        property_cameras_count=parse_int(data.get("cameras_count")),
        property_has_wifi=_as_bool(data.get("has_wifi")),
        property_residents_count=parse_int(data.get("residents_count")),
        property_created_by=caller.id,
        property_cadastro_date=data.get("cadastro_date") or today_iso(),
        property_crpm=caller.crpm,
        property_batalhao=caller.batalhao,
        property_cia=caller.cia,
        property_type=PROPERTY_TYPE,
        property_bou=None,
    )
    return params


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return parse_bool(value)


class PropertyStore(ABC):
    """Record operations the import pipeline needs from the external store."""

    async def connect(self) -> None:
        """Open resources before the first row."""

    async def close(self) -> None:
        """Release resources after the last row."""

    @abstractmethod
    async def find_duplicate(
        self, name: str, latitude: float, longitude: float, cidade: str
    ) -> bool:
        """Whether a record with the same name, coordinates and city exists."""

    @abstractmethod
    async def create_property(
        self,
        data: Dict[str, Any],
        latitude: float,
        longitude: float,
        caller: CallerProfile,
    ) -> None:
        """Persist one property. Raises StoreError when the store rejects it."""

    @abstractmethod
    async def record_import_error(
        self,
        import_session_id: str,
        row_number: int,
        property_name: str,
        error_type: str,
        error_message: str,
        created_by: Optional[str],
    ) -> None:
        """Append a row failure to the import audit log."""


class PostgresPropertyStore(PropertyStore):
    """Property store backed by the hosted PostgreSQL database."""

    DUPLICATE_QUERY = """
        SELECT id FROM properties
        WHERE lower(name) = lower(%(name)s)
          AND latitude = %(latitude)s
          AND longitude = %(longitude)s
          AND lower(cidade) = lower(%(cidade)s)
        LIMIT 1
    """

    IMPORT_LOG_INSERT = """
        INSERT INTO import_logs (
            import_session_id, row_number, property_name,
            error_type, error_message, created_by
        ) VALUES (
            %(import_session_id)s, %(row_number)s, %(property_name)s,
            %(error_type)s, %(error_message)s, %(created_by)s
        )
    """

    def __init__(self, db_conn: DatabaseConnection):
        self.db_conn = db_conn

    async def connect(self) -> None:
        if not self.db_conn.is_connected():
            await self.db_conn.connect()

    async def close(self) -> None:
        await self.db_conn.disconnect()

    async def find_duplicate(
        self, name: str, latitude: float, longitude: float, cidade: str
    ) -> bool:
        try:
            existing = await self.db_conn.execute_scalar(
                self.DUPLICATE_QUERY,
                {
                    "name": name,
                    "latitude": latitude,
                    "longitude": longitude,
                    "cidade": cidade,
                },
            )
        except Exception as e:
            store_error = translate_db_error(e)
            if store_error:
                raise store_error from e
            raise
        return existing is not None

    async def create_property(
        self,
        data: Dict[str, Any],
        latitude: float,
        longitude: float,
        caller: CallerProfile,
    ) -> None:
        params = build_profile_params(data, latitude, longitude, caller)
        query = sql.SQL("SELECT create_property_profile({args})").format(
            args=sql.SQL(", ").join(
                sql.SQL("{} => {}").format(sql.Identifier(name), sql.Placeholder(name))
                for name in params
            )
        )
        try:
            await self.db_conn.execute_query(query, params)
        except Exception as e:
            store_error = translate_db_error(e)
            if store_error:
                logger.error(
                    "create_property_profile failed: code=%s, message=%s, hint=%s",
                    store_error.code,
                    store_error.message,
                    store_error.hint,
                )
                raise store_error from e
            raise

    async def record_import_error(
        self,
        import_session_id: str,
        row_number: int,
        property_name: str,
        error_type: str,
        error_message: str,
        created_by: Optional[str],
    ) -> None:
        await self.db_conn.execute_command(
            self.IMPORT_LOG_INSERT,
            {
                "import_session_id": import_session_id,
                "row_number": row_number,
                "property_name": property_name,
                "error_type": error_type,
                "error_message": error_message,
                "created_by": created_by,
            },
        )
