"""Role-aware reads over the directory tables.

Anonymous callers see active, listed rows and public columns only.
Any bearer identity sees every column and unlisted rows. Soft-deleted
rows are visible to admins who ask for them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from steeple.auth.identity import McpIdentity
from steeple.directory.entities import LISTED, EntitySpec, Selector
from steeple.directory.errors import ReadForbiddenError, ReadNotFoundError
from steeple.state.database import Database


@dataclass(frozen=True)
class ListQuery:
    limit: int = 20
    offset: int = 0
    include_deleted: bool = False


@dataclass(frozen=True)
class Visibility:
    include_non_public: bool
    include_deleted: bool


def resolve_visibility(identity: McpIdentity | None, include_deleted: bool) -> Visibility:
    """Decide what the caller may see.

    ``include_deleted`` from an anonymous caller is dropped; from a
    non-admin identity it is refused.
    """
    if include_deleted:
        if identity is None:
            include_deleted = False
        elif not identity.is_admin:
            raise ReadForbiddenError("Only admins can include deleted records")
    return Visibility(
        include_non_public=identity is not None,
        include_deleted=include_deleted,
    )


def _filters(spec: EntitySpec, visibility: Visibility) -> tuple[list[str], list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if not visibility.include_deleted:
        clauses.append("deleted_at IS NULL")
    if not visibility.include_non_public and spec.public_requires_listed:
        clauses.append("status = ?")
        params.append(LISTED)
    return clauses, params


def _columns(spec: EntitySpec, visibility: Visibility) -> str:
    if visibility.include_non_public:
        return "*"
    return ", ".join(spec.public_columns)


class ReadService:
    """List and fetch rows for any directory entity."""

    def __init__(self, database: Database, *, max_limit: int = 200, max_offset: int = 1_000_000):
        self._db = database
        self._max_limit = max_limit
        self._max_offset = max_offset

    async def list(
        self,
        spec: EntitySpec,
        query: ListQuery,
        identity: McpIdentity | None,
    ) -> dict[str, Any]:
        visibility = resolve_visibility(identity, query.include_deleted)
        limit = min(self._max_limit, max(1, query.limit))
        offset = min(self._max_offset, max(0, query.offset))

        clauses, params = _filters(spec, visibility)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""

        total_row = await self._db.query_one(
            f"SELECT COUNT(*) AS total FROM {spec.table}{where}", tuple(params),
        )
        items = await self._db.query(
            f"SELECT {_columns(spec, visibility)} FROM {spec.table}{where} "
            "ORDER BY id LIMIT ? OFFSET ?",
            (*params, limit, offset),
        )
        return {
            "items": items,
            "total": total_row["total"] if total_row else 0,
            "limit": limit,
            "offset": offset,
        }

    async def get(
        self,
        spec: EntitySpec,
        selector: Selector,
        include_deleted: bool,
        identity: McpIdentity | None,
    ) -> dict[str, Any]:
        visibility = resolve_visibility(identity, include_deleted)
        key_clause, key_params = selector.where()
        clauses, params = _filters(spec, visibility)
        where = " AND ".join([key_clause, *clauses])

        item = await self._db.query_one(
            f"SELECT {_columns(spec, visibility)} FROM {spec.table} WHERE {where}",
            (*key_params, *params),
        )
        if item is None:
            raise ReadNotFoundError(f"{spec.label} not found")
        return item
