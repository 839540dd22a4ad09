from __future__ import annotations

from datetime import datetime
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from petitions.core.config import get_settings
from petitions.services.records import SignatureRecord, WriteResult


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


_SIGNATURE_COLUMNS = """
  s.id,
  s.petition_id::text as petition_id,
  s.user_id,
  s.user_token,
  s.ip_address,
  s.city,
  s.state,
  s.country,
  s.zip_code,
  s.legacy_id,
  s.created_at
"""


class PostgresRepository:
    """Primary signature store.

    Serves as the petition resolver, the dedup checker, the primary writer and the read path.
    Petition ids are matched on ``petitions.legacy_id`` when ``read_petitions_from_legacy`` is set
    and on ``petitions.id`` otherwise. Realtime reads go to the primary pool; other reads go to the
    replica pool when one is configured.
    """

    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        replica_database_url: str | None = None,
        read_petitions_from_legacy: bool = False,
    ) -> None:
        self.database_url = database_url
        self.replica_database_url = replica_database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.read_petitions_from_legacy = read_petitions_from_legacy
        self._pool: asyncpg.Pool | None = None
        self._replica_pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._replica_pool is not None:
            await self._replica_pool.close()
            self._replica_pool = None
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def petition_exists(self, petition_id: str) -> bool:
        if self.read_petitions_from_legacy:
            pool = await self._get_pool()
            return bool(
                await pool.fetchval(
                    "select exists(select 1 from petitions where legacy_id = $1)",
                    petition_id,
                )
            )

        native_id = self._coerce_native_id(petition_id)
        if native_id is None:
            return False
        pool = await self._get_pool()
        return bool(
            await pool.fetchval(
                "select exists(select 1 from petitions where id = $1)",
                native_id,
            )
        )

    async def translate_legacy_petition_id(self, legacy_petition_id: str) -> int | None:
        pool = await self._get_pool()
        native_id = await pool.fetchval(
            "select id from petitions where legacy_id = $1",
            legacy_petition_id,
        )
        return self._coerce_native_id(native_id)

    async def signature_exists(
        self,
        petition_id: str,
        *,
        user_id: str | None,
        user_token: str | None,
    ) -> bool:
        normalized_user_id = self._coerce_text(user_id)
        identity_column = "user_id" if normalized_user_id else "user_token"
        identity = normalized_user_id or self._coerce_text(user_token)
        if identity is None:
            return False

        if self.read_petitions_from_legacy:
            petition_filter = "s.petition_id = (select id from petitions where legacy_id = $1)"
            petition_key: Any = petition_id
        else:
            petition_filter = "s.petition_id = $1"
            petition_key = self._coerce_native_id(petition_id)
            if petition_key is None:
                return False

        pool = await self._get_pool()
        return bool(
            await pool.fetchval(
                f"""
                select exists(
                  select 1
                  from signatures s
                  where {petition_filter}
                    and s.{identity_column} = $2
                )
                """,
                petition_key,
                identity,
            )
        )

    async def write_signature(self, record: SignatureRecord) -> WriteResult:
        native_petition_id = self._coerce_native_id(record.petition_id)
        if native_petition_id is None:
            return WriteResult.failed("invalid_petition_id")

        try:
            pool = await self._get_pool()
            row = await pool.fetchrow(
                """
                insert into signatures (
                  petition_id,
                  user_id,
                  user_token,
                  ip_address,
                  city,
                  state,
                  country,
                  zip_code,
                  legacy_id
                )
                values ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                returning id
                """,
                native_petition_id,
                self._coerce_text(record.user_id),
                self._coerce_text(record.user_token),
                self._coerce_text(record.ip_address),
                self._coerce_text(record.city),
                self._coerce_text(record.state),
                self._coerce_text(record.country),
                self._coerce_text(record.zip_code),
                record.legacy_id,
            )
        except RepositoryUnavailableError as exc:
            return WriteResult.failed("unavailable", error=exc)
        except pg_exc.UniqueViolationError as exc:
            return WriteResult.failed("duplicate", error=exc)
        except asyncpg.PostgresError as exc:
            return WriteResult.failed("database_error", error=exc)

        if not row:
            return WriteResult.failed("no_row_returned")
        return WriteResult.succeeded(int(row["id"]))

    async def load_signature(self, signature_id: int, *, realtime: bool = False) -> SignatureRecord:
        pool = await self._get_pool(realtime=realtime)
        row = await pool.fetchrow(
            f"""
            select {_SIGNATURE_COLUMNS}
            from signatures s
            where s.id = $1
            """,
            signature_id,
        )
        if not row:
            raise RepositoryNotFoundError("signature not found")
        return self._signature_row_to_record(row)

    async def load_signatures(self, signature_ids: list[int], *, realtime: bool = False) -> list[SignatureRecord]:
        if not signature_ids:
            return []

        pool = await self._get_pool(realtime=realtime)
        rows = await pool.fetch(
            f"""
            select {_SIGNATURE_COLUMNS}
            from signatures s
            where s.id = any($1::bigint[])
            """,
            list(signature_ids),
        )
        by_id = {int(row["id"]): self._signature_row_to_record(row) for row in rows}
        return [by_id[signature_id] for signature_id in signature_ids if signature_id in by_id]

    async def _get_pool(self, *, realtime: bool = True) -> asyncpg.Pool:
        if not realtime and self.replica_database_url:
            if self._replica_pool is None:
                self._replica_pool = await self._create_pool(self.replica_database_url)
            return self._replica_pool

        if not self.database_url:
            raise RepositoryUnavailableError("PS_DATABASE_URL is required")

        if self._pool is None:
            self._pool = await self._create_pool(self.database_url)
        return self._pool

    async def _create_pool(self, dsn: str) -> asyncpg.Pool:
        try:
            return await asyncpg.create_pool(
                dsn=dsn,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _signature_row_to_record(row: asyncpg.Record) -> SignatureRecord:
        created_at = row["created_at"]
        return SignatureRecord(
            petition_id=row["petition_id"],
            user_id=row["user_id"],
            user_token=row["user_token"],
            ip_address=row["ip_address"],
            city=row["city"],
            state=row["state"],
            country=row["country"],
            zip_code=row["zip_code"],
            legacy_id=row["legacy_id"],
            primary_id=int(row["id"]),
            created_at=created_at if isinstance(created_at, datetime) else None,
        )

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return None

    @staticmethod
    def _coerce_native_id(value: Any) -> int | None:
        if isinstance(value, bool) or value is None:
            return None
        try:
            parsed = int(str(value).strip())
        except (TypeError, ValueError):
            return None
        return parsed if parsed > 0 else None


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        replica_database_url=settings.database_replica_url,
        read_petitions_from_legacy=settings.read_petitions_from_legacy,
    )
