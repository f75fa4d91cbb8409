"""Tests for the entity mapper (rows <-> canonical entities)."""
from uuid import uuid4

import pytest

from reqflow_core import mapper, models, schemas
from reqflow_core.errors import ValidationError


def requirement_row(**overrides):
    row = {
        "id": str(uuid4()),
        "project_id": str(uuid4()),
        "parent_id": None,
        "title": "Login",
        "description": "The system shall authenticate users",
        "priority": "high",
        "status": "draft",
        "created_at": None,
        "updated_at": None,
        "created_by": "user-1",
        "updated_by": None,
        "version": 3,
    }
    row.update(overrides)
    return row


class TestMapEntity:
    """Mapping is structural and never invents values."""

    def test_none_maps_to_none(self):
        """Test that a missing row maps to None."""
        assert mapper.map_entity("requirements", None) is None
        assert mapper.entity_to_row(None) is None

    def test_null_timestamps_stay_null(self):
        """Test that null timestamps are not replaced by defaults."""
        entity = mapper.map_entity("requirements", requirement_row())

        assert entity.created_at is None
        assert entity.updated_at is None
        assert entity.updated_by is None

    def test_mapping_preserves_row_fields(self):
        """Test that every stored field reaches the entity."""
        row = requirement_row()
        entity = mapper.map_entity("requirements", row)
        back = mapper.entity_to_row(entity)

        for field, value in row.items():
            assert back[field] == value, field

    def test_map_entities_drops_nulls(self):
        """Test that None rows are skipped in a batch."""
        rows = [requirement_row(title="A"), None, requirement_row(title="B")]

        entities = mapper.map_entities("requirements", rows)

        assert [e.title for e in entities] == ["A", "B"]
        assert mapper.map_entities("requirements", None) == []

    def test_unknown_entity_type(self):
        """Test that an unregistered entity type raises."""
        with pytest.raises(ValueError):
            mapper.map_entity("widgets", {"id": str(uuid4())})


class TestRowFromModel:
    def test_metadata_column_uses_column_name(self):
        """Test that the metadata column keeps its column name in rows."""
        project = models.Project(id=uuid4(), name="Alpha", metadata_={"source": "template"}, version=1)

        row = mapper.row_from_model(project)

        assert row["metadata"] == {"source": "template"}
        assert "metadata_" not in row
        assert row["id"] == str(project.id)

    def test_overrides_replace_values(self):
        """Test that overrides win over model values."""
        project = models.Project(id=uuid4(), name="Beta", version=2)

        row = mapper.row_from_model(project, overrides={"name": "Alpha", "version": 1})

        assert row["name"] == "Alpha"
        assert row["version"] == 1

    def test_project_row_maps_to_entity(self):
        """Test mapping a stored project to its entity."""
        project = models.Project(id=uuid4(), name="Alpha", status="on_hold", version=1)

        entity = mapper.map_entity("projects", mapper.row_from_model(project))

        assert isinstance(entity, schemas.Project)
        assert entity.status == "on_hold"
        assert entity.created_at is None


class TestResolveFilters:
    def test_public_names_map_to_columns(self):
        """Test translating public filter names to columns."""
        assert mapper.resolve_filters("projects", {"user_id": "u1"}) == {"created_by": "u1"}

    def test_none_values_are_omitted(self):
        """Test that None filter values are dropped."""
        assert mapper.resolve_filters("requirements", {"project_id": None, "user_id": "u1"}) == {"created_by": "u1"}

    def test_enum_values_are_unwrapped(self):
        """Test that enum filter values become their stored value."""
        resolved = mapper.resolve_filters("external_docs", {"type": models.DocumentType.STANDARD})

        assert resolved == {"type": "standard"}

    def test_unknown_filter_rejected(self):
        """Test that an unsupported filter name raises."""
        with pytest.raises(ValidationError):
            mapper.resolve_filters("collections", {"project_id": "p1"})
