"""
Unit tests for the EAV service facade.

Tests cover:
- Atomic entity writes with attributes and relations
- Required-attribute enforcement
- Read path with relation specs and filters
- Relation reuse through the facade
- Account self-service writes
"""

import tempfile
from pathlib import Path

import pytest

from campus.eav_server.errors import NotFoundError, ValidationError
from campus.eav_server.service import EavService, RelationInput, WriteResult
from campus.eav_server.store import AccountStore, Database


class TestEavService:
    """Tests for EavService."""

    @pytest.fixture
    def service(self):
        """Create a service over a database in a temporary directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield EavService(Database(str(Path(tmpdir) / "campus.db"), wal_mode=False))

    def _count(self, service, table):
        with service.db.connect() as conn:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    @pytest.mark.asyncio
    async def test_create_and_project(self, service):
        result = await service.create_entity(
            "STUDENT", attributes={"firstName": "Ada", "lastName": "Lovelace", "gpa": 3.9}
        )

        assert result.created is True
        assert result.written == ["firstName", "lastName", "gpa"]
        projection = await service.get_entity(result.entity_id)
        assert projection["type"] == "STUDENT"
        assert projection["firstName"] == "Ada"
        assert projection["lastName"] == "Lovelace"
        assert projection["gpa"] == 3.9

    @pytest.mark.asyncio
    async def test_create_with_relations(self, service):
        course = await service.create_entity("COURSE", attributes={"courseName": "Algebra"})

        student = await service.create_entity(
            "STUDENT",
            attributes={"firstName": "Ada"},
            relations=[{"toId": course.entity_id, "relationType": "ENROLLED_IN"}],
        )

        assert len(student.relation_ids) == 1
        projection = await service.get_entity(student.entity_id, ["ENROLLED_IN:from:courses"])
        assert [c["courseName"] for c in projection["courses"]] == ["Algebra"]
        assert projection["courses"][0]["grade"] == "N/A"

    @pytest.mark.asyncio
    async def test_failed_write_leaves_nothing_behind(self, service):
        """A missing relation target rolls back the entity and its values."""
        with pytest.raises(NotFoundError):
            await service.create_entity(
                "STUDENT",
                attributes={"firstName": "Ada"},
                relations=[RelationInput("missing", "ENROLLED_IN")],
            )

        assert self._count(service, "entities") == 0
        assert self._count(service, "entity_values") == 0

    @pytest.mark.asyncio
    async def test_failed_update_leaves_entity_unchanged(self, service):
        """A missing relation target rolls back core fields and values too."""
        created = await service.create_entity("STUDENT", name="Old", attributes={"major": "Math"})

        with pytest.raises(NotFoundError):
            await service.update_entity(
                created.entity_id,
                name="New",
                is_active=False,
                attributes={"major": "Physics"},
                relations=[RelationInput("missing", "ENROLLED_IN")],
            )

        projection = await service.get_entity(created.entity_id)
        assert projection["name"] == "Old"
        assert projection["isActive"] is True
        assert projection["major"] == "Math"
        assert self._count(service, "entity_relations") == 0

    @pytest.mark.asyncio
    async def test_enforce_required(self, service):
        await service.initialize(seed=True)

        with pytest.raises(ValidationError) as exc_info:
            await service.create_entity(
                "STUDENT", attributes={"firstName": "Ada"}, enforce_required=True
            )
        assert sorted(exc_info.value.details["errors"]) == ["email", "lastName", "studentId"]

        result = await service.create_entity(
            "STUDENT",
            attributes={
                "firstName": "Ada",
                "lastName": "Lovelace",
                "email": "ada@example.edu",
                "studentId": "S1",
            },
            enforce_required=True,
        )
        assert result.entity_id

    @pytest.mark.asyncio
    async def test_relation_input_requires_fields(self, service):
        with pytest.raises(ValidationError):
            await service.create_entity("STUDENT", relations=[{"toId": "x"}])

    @pytest.mark.asyncio
    async def test_update_entity(self, service):
        created = await service.create_entity("STUDENT", attributes={"major": "Math"})

        result = await service.update_entity(
            created.entity_id, is_active=False, attributes={"major": "Physics", "minor": ""}
        )

        assert result.created is False
        assert result.written == ["major"]
        assert result.skipped == ["minor"]
        projection = await service.get_entity(created.entity_id)
        assert projection["major"] == "Physics"
        assert projection["isActive"] is False

    @pytest.mark.asyncio
    async def test_update_missing_entity(self, service):
        with pytest.raises(NotFoundError):
            await service.update_entity("missing", attributes={"major": "Math"})

    @pytest.mark.asyncio
    async def test_query_entities(self, service):
        for major in ("Math", "Physics", "Math"):
            await service.create_entity("STUDENT", attributes={"major": major})
        await service.create_entity("COURSE", attributes={"title": "Algebra"})

        math = await service.query_entities("STUDENT", filters={"major": "Math"})
        courses = await service.query_entities("COURSE")

        assert len(math) == 2
        assert all(p["major"] == "Math" for p in math)
        assert courses[0]["name"] == "Algebra"

    @pytest.mark.asyncio
    async def test_query_entities_with_relations(self, service):
        """Listed projections carry the same relation lists as get_entity."""
        course = await service.create_entity("COURSE", attributes={"title": "Algebra"})
        ada = await service.create_entity(
            "STUDENT",
            name="Ada",
            relations=[RelationInput(course.entity_id, "ENROLLED_IN", {"grade": "A"})],
        )
        grace = await service.create_entity("STUDENT", name="Grace")
        include = ["ENROLLED_IN:from:courses"]

        listed = {p["id"]: p for p in await service.query_entities("STUDENT", include=include)}

        assert listed[ada.entity_id] == await service.get_entity(ada.entity_id, include)
        assert [c["courseName"] for c in listed[ada.entity_id]["courses"]] == ["Algebra"]
        assert listed[ada.entity_id]["courses"][0]["grade"] == "A"
        assert listed[grace.entity_id]["courses"] == []

        roster = await service.query_entities("COURSE", include=["ENROLLED_IN:to:students"])
        assert [s["id"] for s in roster[0]["students"]] == [ada.entity_id]

    @pytest.mark.asyncio
    async def test_link_reuses_existing_edge(self, service):
        student = await service.create_entity("STUDENT")
        course = await service.create_entity("COURSE")

        first = await service.link(student.entity_id, course.entity_id, "ENROLLED_IN")
        await service.deactivate_relation(first.id)
        second = await service.link(
            student.entity_id, course.entity_id, "ENROLLED_IN", {"attendance": 50}
        )
        duplicate = await service.link(
            student.entity_id, course.entity_id, "ENROLLED_IN", reuse_existing=False
        )

        assert second.id == first.id
        assert second.is_active is True
        assert duplicate.id != first.id
        assert self._count(service, "entity_relations") == 2

    @pytest.mark.asyncio
    async def test_remove_relation(self, service):
        student = await service.create_entity("STUDENT")
        course = await service.create_entity("COURSE")
        relation = await service.link(student.entity_id, course.entity_id, "ENROLLED_IN")

        await service.remove_relation(relation.id)

        with pytest.raises(NotFoundError):
            await service.remove_relation(relation.id)

    @pytest.mark.asyncio
    async def test_define_and_list_attributes(self, service):
        await service.define_attribute(
            "roomCapacity", "Room Capacity", "NUMBER", "FACILITY", ["ROOM"]
        )

        names = [a.name for a in await service.list_attributes("ROOM")]
        assert names == ["roomCapacity"]

    @pytest.mark.asyncio
    async def test_entity_for_account(self, service):
        account = await AccountStore(service.db).create("ada@example.edu", "hash", "STUDENT")

        projection, created = await service.entity_for_account(account.id, "STUDENT")
        again, created_again = await service.entity_for_account(account.id, "STUDENT")

        assert created is True
        assert created_again is False
        assert again["id"] == projection["id"]

    @pytest.mark.asyncio
    async def test_update_entity_for_account(self, service):
        account = await AccountStore(service.db).create("ada@example.edu", "hash", "STUDENT")

        first = await service.update_entity_for_account(
            account.id, "STUDENT", attributes={"firstName": "Ada"}
        )
        second = await service.update_entity_for_account(
            account.id, "STUDENT", attributes={"lastName": "Lovelace"}
        )

        assert first.created is True
        assert second.created is False
        assert second.entity_id == first.entity_id
        projection = await service.get_entity(first.entity_id)
        assert projection["firstName"] == "Ada"
        assert projection["lastName"] == "Lovelace"

    def test_write_result_to_dict(self):
        result = WriteResult("e1", created=True, written=["a"], relation_ids=["r1"])
        assert result.to_dict() == {
            "id": "e1",
            "created": True,
            "written": ["a"],
            "skipped": [],
            "relationIds": ["r1"],
        }
