"""Directory entity definitions.

Each entity type maps a wire name (``churches``, ``counties``,
``networks``) onto a table, its typed mutable columns, and the subset
of columns an anonymous caller may see.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from steeple.directory.errors import ValidationError

CHURCH_STATUSES = (
    "Listed", "Ready to list", "Assess", "Needs data", "Unlisted", "Heretical", "Closed",
)
NETWORK_STATUSES = ("Listed", "Unlisted", "Heretical")
LISTED = "Listed"

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_PATH_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")

# Fields a caller can never set directly.
SYSTEM_FIELDS = frozenset({"id", "created_at", "updated_at", "deleted_at"})

# SQLite INTEGER is a signed 64-bit value.
MAX_INTEGER = 2**63 - 1


@dataclass(frozen=True)
class EntityField:
    """One mutable column."""

    name: str
    kind: str = "text"  # text | int | real
    public: bool = False
    choices: tuple[str, ...] = ()


@dataclass(frozen=True)
class EntitySpec:
    """Access metadata for one directory entity type."""

    name: str  # wire name used in tool names and resource URIs
    table: str
    singular: str
    fields: tuple[EntityField, ...]
    public_requires_listed: bool = False
    _by_name: dict[str, EntityField] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_by_name", {f.name: f for f in self.fields})

    @property
    def label(self) -> str:
        return self.singular.capitalize()

    @property
    def public_columns(self) -> tuple[str, ...]:
        return ("id",) + tuple(f.name for f in self.fields if f.public)

    def get_field(self, name: str) -> EntityField | None:
        return self._by_name.get(name)


CHURCHES = EntitySpec(
    name="churches",
    table="churches",
    singular="church",
    public_requires_listed=True,
    fields=(
        EntityField("name", public=True),
        EntityField("path", public=True),
        EntityField("status", public=True, choices=CHURCH_STATUSES),
        EntityField("gathering_address", public=True),
        EntityField("website", public=True),
        EntityField("mailing_address"),
        EntityField("latitude", "real"),
        EntityField("longitude", "real"),
        EntityField("county_id", "int"),
        EntityField("statement_of_faith"),
        EntityField("phone"),
        EntityField("email"),
        EntityField("facebook"),
        EntityField("instagram"),
        EntityField("youtube"),
        EntityField("spotify"),
        EntityField("language"),
        EntityField("image_path"),
        EntityField("image_alt"),
        EntityField("private_notes"),
        EntityField("public_notes"),
        EntityField("last_updated"),
    ),
)

COUNTIES = EntitySpec(
    name="counties",
    table="counties",
    singular="county",
    fields=(
        EntityField("name", public=True),
        EntityField("path", public=True),
        EntityField("description", public=True),
        EntityField("population", "int", public=True),
        EntityField("image_path"),
        EntityField("image_alt"),
    ),
)

NETWORKS = EntitySpec(
    name="networks",
    table="affiliations",
    singular="network",
    public_requires_listed=True,
    fields=(
        EntityField("name", public=True),
        EntityField("path", public=True),
        EntityField("status", public=True, choices=NETWORK_STATUSES),
        EntityField("website", public=True),
        EntityField("public_notes", public=True),
        EntityField("private_notes"),
    ),
)

ENTITIES: dict[str, EntitySpec] = {
    spec.name: spec for spec in (CHURCHES, COUNTIES, NETWORKS)
}


def get_entity(name: str) -> EntitySpec:
    spec = ENTITIES.get(name)
    if spec is None:
        raise ValidationError(f"Unknown entity: {name}")
    return spec


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", (text or "").strip().lower()).strip("-")


# --- Selectors ---


@dataclass(frozen=True)
class Selector:
    """Identifies one row by id or path. When both are set, id wins."""

    id: int | None = None
    path: str | None = None

    def __post_init__(self) -> None:
        if self.id is None and not self.path:
            raise ValidationError("Either id or path is required")

    def where(self) -> tuple[str, tuple]:
        if self.id is not None:
            return "id = ?", (self.id,)
        return "path = ?", (self.path,)

    def describe(self) -> str:
        return f"id={self.id}" if self.id is not None else f"path={self.path}"


def read_id(value: Any) -> int | None:
    """Return a positive integer id, or None when the value is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or not 0 < value <= MAX_INTEGER:
        return None
    return value


# --- Version markers ---


def parse_version(value: Any) -> datetime:
    """Parse a caller-supplied updated_at into an aware UTC datetime.

    Accepts ISO-8601 strings and epoch numbers (seconds, or milliseconds
    when the value is too large to be seconds).
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError("updated_at is required and must be a valid date")
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value >= 1_000_000_000_000 else value
        try:
            return datetime.fromtimestamp(seconds, UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise ValidationError("updated_at is required and must be a valid date") from e
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValidationError("updated_at is required and must be a valid date") from e
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    raise ValidationError("updated_at is required and must be a valid date")


def next_version(previous: str | None = None) -> str:
    """Return a fresh updated_at strictly later than ``previous``."""
    now = datetime.now(UTC)
    if previous:
        prior = parse_version(previous)
        if now <= prior:
            now = prior + timedelta(microseconds=1)
    return now.isoformat()


# --- Input validation ---


def _coerce(spec: EntitySpec, entity_field: EntityField, value: Any) -> Any:
    name = entity_field.name
    if value is None:
        if name in ("name", "status"):
            raise ValidationError(f"{spec.name}: {name} cannot be null")
        return None
    if entity_field.kind == "int":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{spec.name}: {name} must be an integer")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValidationError(f"{spec.name}: {name} must be an integer")
            value = int(value)
        if abs(value) > MAX_INTEGER:
            raise ValidationError(f"{spec.name}: {name} is out of range")
        return value
    if entity_field.kind == "real":
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"{spec.name}: {name} must be a number")
        try:
            value = float(value)
        except OverflowError as e:
            raise ValidationError(f"{spec.name}: {name} is out of range") from e
        if not math.isfinite(value):
            raise ValidationError(f"{spec.name}: {name} is out of range")
        return value

    if not isinstance(value, str):
        raise ValidationError(f"{spec.name}: {name} must be a string")
    if name == "name":
        value = value.strip()
        if not value:
            raise ValidationError(f"{spec.name}: name cannot be empty")
    elif name == "path":
        value = value.strip()
        if not _PATH_RE.match(value):
            raise ValidationError(
                f"{spec.name}: path must be a lowercase slug (letters, digits, hyphens)"
            )
    if entity_field.choices and value not in entity_field.choices:
        allowed = ", ".join(entity_field.choices)
        raise ValidationError(f"{spec.name}: status must be one of: {allowed}")
    return value


def validate_fields(spec: EntitySpec, data: Any, *, action: str) -> dict[str, Any]:
    """Validate a create/update payload and return the typed column values.

    Unknown or system-managed keys are rejected so a write is never
    partially applied.
    """
    if not isinstance(data, dict):
        raise ValidationError(f"{spec.name}_{action} requires a data object")

    unknown = sorted(k for k in data if spec.get_field(k) is None)
    if unknown:
        readonly = [k for k in unknown if k in SYSTEM_FIELDS]
        if readonly:
            raise ValidationError(
                f"{spec.name}_{action} cannot set system field(s): {', '.join(readonly)}"
            )
        raise ValidationError(
            f"{spec.name}_{action} has unknown field(s): {', '.join(unknown)}"
        )

    values: dict[str, Any] = {}
    for key, raw in data.items():
        values[key] = _coerce(spec, spec.get_field(key), raw)  # type: ignore[arg-type]
    return values
