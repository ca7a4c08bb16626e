"""Tests for entity metadata, selectors, versions, and input validation."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from steeple.directory.entities import (
    CHURCHES,
    COUNTIES,
    NETWORKS,
    Selector,
    get_entity,
    next_version,
    parse_version,
    read_id,
    slugify,
    validate_fields,
)
from steeple.directory.errors import ValidationError


class TestEntitySpecs:
    def test_registry(self):
        assert get_entity("churches") is CHURCHES
        assert get_entity("networks").table == "affiliations"
        with pytest.raises(ValidationError):
            get_entity("sermons")

    def test_public_columns_exclude_private_fields(self):
        assert "private_notes" not in CHURCHES.public_columns
        assert "private_notes" not in NETWORKS.public_columns
        assert CHURCHES.public_columns[0] == "id"
        assert "population" in COUNTIES.public_columns

    def test_listed_requirement(self):
        assert CHURCHES.public_requires_listed
        assert NETWORKS.public_requires_listed
        assert not COUNTIES.public_requires_listed


class TestSelector:
    def test_requires_id_or_path(self):
        with pytest.raises(ValidationError):
            Selector()

    def test_id_wins(self):
        assert Selector(id=4, path="grace").where() == ("id = ?", (4,))

    def test_path(self):
        assert Selector(path="grace").where() == ("path = ?", ("grace",))

    @pytest.mark.parametrize("value,expected", [
        (5, 5), (5.0, 5), ("12", 12), (0, None), (-3, None),
        (2.5, None), (True, None), ("abc", None), (None, None),
        (2**63 - 1, 2**63 - 1), (2**63, None), (10**30, None), (str(10**30), None),
    ])
    def test_read_id(self, value, expected):
        assert read_id(value) == expected


class TestVersions:
    def test_parse_iso_with_z(self):
        parsed = parse_version("2025-03-01T12:00:00Z")
        assert parsed == datetime(2025, 3, 1, 12, tzinfo=UTC)

    def test_parse_naive_as_utc(self):
        assert parse_version("2025-03-01T12:00:00") == datetime(2025, 3, 1, 12, tzinfo=UTC)

    def test_parse_epoch_seconds_and_millis(self):
        seconds = parse_version(1_740_830_400)
        millis = parse_version(1_740_830_400_000)
        assert seconds == millis

    @pytest.mark.parametrize("value", [None, "", "yesterday", True, {}])
    def test_parse_invalid(self, value):
        with pytest.raises(ValidationError, match="updated_at is required"):
            parse_version(value)

    def test_next_version_is_strictly_later(self):
        future = "2999-01-01T00:00:00+00:00"
        fresh = next_version(future)
        assert parse_version(fresh) > parse_version(future)

    def test_slugify(self):
        assert slugify("  Grace Community Church! ") == "grace-community-church"
        assert slugify("!!!") == ""


class TestValidateFields:
    def test_typed_values(self):
        values = validate_fields(
            CHURCHES,
            {"name": "  New Name ", "latitude": 40, "county_id": 3.0, "status": "Unlisted"},
            action="update",
        )
        assert values == {
            "name": "New Name", "latitude": 40.0, "county_id": 3, "status": "Unlisted",
        }

    def test_rejects_non_object(self):
        with pytest.raises(ValidationError, match="requires a data object"):
            validate_fields(CHURCHES, ["name"], action="create")

    def test_rejects_system_fields(self):
        with pytest.raises(ValidationError, match="system field"):
            validate_fields(CHURCHES, {"updated_at": "x"}, action="update")

    def test_rejects_unknown_fields(self):
        with pytest.raises(ValidationError, match="unknown field"):
            validate_fields(COUNTIES, {"status": "Listed"}, action="update")

    @pytest.mark.parametrize("data", [
        {"name": ""},
        {"name": None},
        {"status": None},
        {"status": "Gone"},
        {"path": "Not A Slug"},
        {"latitude": "north"},
        {"county_id": 1.5},
        {"website": 42},
        {"county_id": 10**30},
        {"latitude": 10**400},
    ])
    def test_rejects_bad_values(self, data):
        with pytest.raises(ValidationError):
            validate_fields(CHURCHES, data, action="update")

    def test_nullable_optional_field(self):
        assert validate_fields(CHURCHES, {"website": None}, action="update") == {"website": None}
