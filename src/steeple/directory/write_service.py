"""Create, update, soft-delete, and restore directory rows.

Every mutation of an existing row must carry the ``updated_at`` the caller
last saw. The row is re-read under the write lock, compared, and updated
with a guard on the same value, so a stale caller never overwrites a
newer edit. Each successful write records an audit diff in the same
transaction.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

import aiosqlite

from steeple.auth.identity import WRITE_ROLES, McpIdentity
from steeple.directory.entities import (
    EntitySpec,
    Selector,
    next_version,
    parse_version,
    slugify,
    validate_fields,
)
from steeple.directory.errors import (
    ConflictError,
    ValidationError,
    WriteForbiddenError,
    WriteNotFoundError,
)
from steeple.events.bus import Event, EventBus
from steeple.events.types import ENTITY_WRITTEN
from steeple.state.database import Database, utc_now_iso

logger = logging.getLogger(__name__)

_DIFF_SKIP = frozenset({"id", "created_at", "updated_at", "last_updated"})

# Builds the SET assignments for a mutation from the current row and new version.
Assignments = Callable[[dict[str, Any], str], dict[str, Any]]


def compare_records(
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
) -> list[dict[str, Any]]:
    """Field-level diff between two row snapshots."""
    old = before or {}
    new = after or {}
    changes: list[dict[str, Any]] = []
    for key in sorted(set(old) | set(new)):
        if key in _DIFF_SKIP:
            continue
        old_value = old.get(key)
        new_value = new.get(key)
        if old_value is None and new_value is None:
            continue
        if old_value != new_value:
            changes.append({"field": key, "from": old_value, "to": new_value})
    return changes


def require_writer(identity: McpIdentity | None) -> McpIdentity:
    if identity is None:
        raise WriteForbiddenError("Authenticated bearer token is required for write tools")
    if identity.role not in WRITE_ROLES:
        raise WriteForbiddenError("Admin or contributor role required")
    return identity


def require_admin(identity: McpIdentity | None, spec: EntitySpec) -> McpIdentity:
    writer = require_writer(identity)
    if not writer.is_admin:
        raise WriteForbiddenError(f"Only admins can restore deleted {spec.name}")
    return writer


def _path_conflict(spec: EntitySpec, e: aiosqlite.IntegrityError) -> ValidationError:
    if "path" in str(e):
        return ValidationError(f"{spec.name}: path is already in use")
    return ValidationError(f"{spec.name}: constraint violated")


class WriteService:
    """Mutations for any directory entity."""

    def __init__(self, database: Database, event_bus: EventBus | None = None):
        self._db = database
        self._event_bus = event_bus

    async def create(
        self,
        spec: EntitySpec,
        identity: McpIdentity | None,
        data: Any,
    ) -> dict[str, Any]:
        writer = require_writer(identity)
        values = validate_fields(spec, data, action="create")
        if not values.get("name"):
            raise ValidationError(f"{spec.name}_create requires name")
        if not values.get("path"):
            slug = slugify(values["name"])
            if not slug:
                raise ValidationError(f"{spec.name}_create cannot derive a path from name")
            values["path"] = slug

        version = next_version()
        values["created_at"] = version
        values["updated_at"] = version
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)

        try:
            async with self._db.transaction() as conn:
                cursor = await conn.execute(
                    f"INSERT INTO {spec.table} ({columns}) VALUES ({placeholders})",
                    tuple(values.values()),
                )
                created = await self._fetch(conn, spec, Selector(id=cursor.lastrowid), True)
                await self._audit(conn, writer, "create", spec, created["id"], None, created)
        except aiosqlite.IntegrityError as e:
            raise _path_conflict(spec, e) from e

        self._emit(writer, "create", spec, created["id"])
        return created

    async def update(
        self,
        spec: EntitySpec,
        identity: McpIdentity | None,
        selector: Selector,
        expected_updated_at: Any,
        patch: Any,
    ) -> dict[str, Any]:
        writer = require_writer(identity)
        expected = parse_version(expected_updated_at)
        values = validate_fields(spec, patch, action="update")
        if not values:
            raise ValidationError(
                f"{spec.name}_update patch must include at least one mutable field"
            )

        def assignments(current: dict[str, Any], version: str) -> dict[str, Any]:
            return {**values, "updated_at": version}

        return await self._mutate(
            spec, writer, "update", selector, expected,
            include_deleted=False, assignments=assignments,
        )

    async def delete(
        self,
        spec: EntitySpec,
        identity: McpIdentity | None,
        selector: Selector,
        expected_updated_at: Any,
    ) -> dict[str, Any]:
        writer = require_writer(identity)
        expected = parse_version(expected_updated_at)

        def assignments(current: dict[str, Any], version: str) -> dict[str, Any]:
            return {"deleted_at": utc_now_iso(), "updated_at": version}

        return await self._mutate(
            spec, writer, "delete", selector, expected,
            include_deleted=False, assignments=assignments,
        )

    async def restore(
        self,
        spec: EntitySpec,
        identity: McpIdentity | None,
        selector: Selector,
        expected_updated_at: Any,
    ) -> dict[str, Any]:
        writer = require_admin(identity, spec)
        expected = parse_version(expected_updated_at)

        def assignments(current: dict[str, Any], version: str) -> dict[str, Any]:
            if current.get("deleted_at") is None:
                raise ValidationError(f"{spec.label} is not deleted")
            return {"deleted_at": None, "updated_at": version}

        return await self._mutate(
            spec, writer, "restore", selector, expected,
            include_deleted=True, assignments=assignments,
        )

    async def _mutate(
        self,
        spec: EntitySpec,
        writer: McpIdentity,
        action: str,
        selector: Selector,
        expected: Any,
        *,
        include_deleted: bool,
        assignments: Assignments,
    ) -> dict[str, Any]:
        try:
            async with self._db.transaction() as conn:
                current = await self._fetch(conn, spec, selector, include_deleted)
                stored_version = current["updated_at"]
                if parse_version(stored_version) != expected:
                    raise ConflictError(
                        "Version mismatch: updated_at does not match current record version"
                    )

                changes = assignments(current, next_version(stored_version))
                set_clause = ", ".join(f"{col} = ?" for col in changes)
                cursor = await conn.execute(
                    f"UPDATE {spec.table} SET {set_clause} WHERE id = ? AND updated_at = ?",
                    (*changes.values(), current["id"], stored_version),
                )
                if cursor.rowcount != 1:
                    raise ConflictError(
                        "Version mismatch: updated_at does not match current record version"
                    )

                updated = await self._fetch(conn, spec, Selector(id=current["id"]), True)
                await self._audit(conn, writer, action, spec, current["id"], current, updated)
        except aiosqlite.IntegrityError as e:
            raise _path_conflict(spec, e) from e

        self._emit(writer, action, spec, updated["id"])
        return updated

    async def _fetch(
        self,
        conn: aiosqlite.Connection,
        spec: EntitySpec,
        selector: Selector,
        include_deleted: bool,
    ) -> dict[str, Any]:
        key_clause, key_params = selector.where()
        where = key_clause if include_deleted else f"{key_clause} AND deleted_at IS NULL"
        cursor = await conn.execute(f"SELECT * FROM {spec.table} WHERE {where}", key_params)
        row = await cursor.fetchone()
        if row is None:
            raise WriteNotFoundError(f"{spec.label} not found")
        return dict(row)

    async def _audit(
        self,
        conn: aiosqlite.Connection,
        writer: McpIdentity,
        action: str,
        spec: EntitySpec,
        record_id: int,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
    ) -> None:
        changes = compare_records(before, after)
        await conn.execute(
            """INSERT INTO mcp_write_audit (user_id, action, entity, record_id, diff, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                writer.subject_id,
                action,
                spec.name,
                record_id,
                json.dumps(changes) if changes else None,
                utc_now_iso(),
            ),
        )

    def _emit(self, writer: McpIdentity, action: str, spec: EntitySpec, record_id: int) -> None:
        logger.info("%s %s id=%s by %s", action, spec.singular, record_id, writer.subject_id)
        if self._event_bus is not None:
            self._event_bus.emit(Event(
                event_type=ENTITY_WRITTEN,
                subject_id=writer.subject_id,
                data={"action": action, "entity": spec.name, "record_id": record_id},
            ))
