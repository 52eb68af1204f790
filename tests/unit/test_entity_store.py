"""
Unit tests for the entity store.

Tests cover:
- Create with name-required kinds
- Core-field updates
- Cascade delete of values and relations
- find_by_type filtering and pagination
- Batched relation loading in find_by_type
"""

import tempfile
from pathlib import Path

import pytest

from campus.eav_server.errors import NotFoundError, ValidationError
from campus.eav_server.store import entities as entity_module
from campus.eav_server.store import Database, EntityStore, RelationStore, ValueStore


class TestEntityStore:
    """Tests for EntityStore."""

    @pytest.fixture
    def db(self):
        """Create an initialized database in a temporary directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            database = Database(str(Path(tmpdir) / "campus.db"), wal_mode=False)
            yield database

    @pytest.fixture
    def entities(self, db):
        return EntityStore(db)

    @pytest.mark.asyncio
    async def test_create_and_get(self, entities):
        created = await entities.create("student", name="Ada Lovelace", description="Transfer")

        fetched = await entities.get(created.id)
        assert fetched.type == "STUDENT"
        assert fetched.name == "Ada Lovelace"
        assert fetched.description == "Transfer"
        assert fetched.is_active is True
        assert fetched.values == {}

    @pytest.mark.asyncio
    async def test_name_required_kinds(self, entities):
        """DEPARTMENT, EVENT and friends cannot be created without a name."""
        for kind in ("DEPARTMENT", "ASSESSMENT", "ASSIGNMENT", "ANNOUNCEMENT", "EVENT"):
            with pytest.raises(ValidationError) as exc_info:
                await entities.create(kind, name="  ")
            assert exc_info.value.field_name == "name"

        # Other kinds do not need one
        assert (await entities.create("ROOM")).name is None

    @pytest.mark.asyncio
    async def test_empty_type_rejected(self, entities):
        with pytest.raises(ValidationError):
            await entities.create("")

    @pytest.mark.asyncio
    async def test_get_missing(self, entities):
        assert await entities.get("missing") is None
        with pytest.raises(NotFoundError):
            await entities.require("missing")

    @pytest.mark.asyncio
    async def test_update_core_fields(self, entities):
        entity = await entities.create("COURSE", name="Algebra")

        updated = await entities.update(entity.id, description="Intro", is_active=False)

        assert updated.name == "Algebra"
        assert updated.description == "Intro"
        assert updated.is_active is False
        assert updated.type == "COURSE"

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, entities):
        with pytest.raises(NotFoundError):
            await entities.update("missing", name="x")

    @pytest.mark.asyncio
    async def test_delete_cascades(self, db, entities):
        """No values or relations reference a deleted entity."""
        values = ValueStore(db)
        relations = RelationStore(db)
        student = await entities.create("STUDENT")
        course = await entities.create("COURSE", name="Algebra")
        parent = await entities.create("PARENT")
        await values.set_many(student.id, {"firstName": "Ada", "lastName": "Lovelace", "gpa": 3.9})
        await values.set_many(course.id, {"credits": 3})
        await relations.link(student.id, course.id, "ENROLLED_IN")
        await relations.link(parent.id, student.id, "PARENT_OF")

        counts = await entities.delete(student.id)

        assert counts == {"values": 3, "relations": 2, "entities": 1}
        with db.connect() as conn:
            assert conn.execute(
                "SELECT COUNT(*) FROM entity_values WHERE entity_id = ?", (student.id,)
            ).fetchone()[0] == 0
            assert conn.execute(
                "SELECT COUNT(*) FROM entity_relations WHERE from_entity_id = ? OR to_entity_id = ?",
                (student.id, student.id),
            ).fetchone()[0] == 0
        assert await entities.get(student.id) is None
        # Unrelated data survives
        assert (await entities.get(course.id)).values == {"credits": 3}

    @pytest.mark.asyncio
    async def test_delete_missing_raises(self, entities):
        with pytest.raises(NotFoundError):
            await entities.delete("missing")

    @pytest.mark.asyncio
    async def test_find_by_type_loads_values(self, db, entities):
        values = ValueStore(db)
        ada = await entities.create("STUDENT")
        await values.set_many(ada.id, {"firstName": "Ada"})
        await entities.create("COURSE", name="Algebra")

        students = await entities.find_by_type("STUDENT")

        assert [s.id for s in students] == [ada.id]
        assert students[0].values == {"firstName": "Ada"}

    @pytest.mark.asyncio
    async def test_find_by_type_filters(self, db, entities):
        values = ValueStore(db)
        for major, active in (("Math", True), ("Physics", True), ("Math", False)):
            student = await entities.create("STUDENT", is_active=active)
            await values.set_many(student.id, {"major": major})

        assert len(await entities.find_by_type("STUDENT", is_active=True)) == 2
        math = await entities.find_by_type("STUDENT", filters={"major": "math"})
        assert len(math) == 2
        active_math = await entities.find_by_type("STUDENT", is_active=True, filters={"major": "Math"})
        assert len(active_math) == 1

    @pytest.mark.asyncio
    async def test_find_by_type_pagination(self, entities):
        for i in range(5):
            await entities.create("ROOM", name=f"R{i}")

        page = await entities.find_by_type("ROOM", limit=2, offset=1)
        assert len(page) == 2
        assert await entities.count_by_type("ROOM") == 5

    @pytest.mark.asyncio
    async def test_find_by_type_without_relations_leaves_them_unloaded(self, entities):
        await entities.create("STUDENT")

        [student] = await entities.find_by_type("STUDENT")

        assert student.relations_from is None
        assert student.relations_to is None

    @pytest.mark.asyncio
    async def test_find_by_type_loads_relations(self, db, entities, monkeypatch):
        """Relations are loaded with one batched query per requested kind."""
        relations = RelationStore(db)
        values = ValueStore(db)
        course = await entities.create("COURSE", name="Algebra")
        await values.set_many(course.id, {"code": "MATH101"})
        teacher = await entities.create("TEACHER")
        ada = await entities.create("STUDENT", name="Ada")
        grace = await entities.create("STUDENT", name="Grace")
        alan = await entities.create("STUDENT", name="Alan")
        await relations.link(ada.id, course.id, "ENROLLED_IN")
        dropped = await relations.link(grace.id, course.id, "ENROLLED_IN")
        await relations.deactivate(dropped.id)
        await relations.link(teacher.id, course.id, "TEACHES")

        calls = []
        original = entity_module.fetch_relations_many

        def counting(conn, entity_ids, *args):
            calls.append(list(entity_ids))
            return original(conn, entity_ids, *args)

        monkeypatch.setattr(entity_module, "fetch_relations_many", counting)

        students = await entities.find_by_type(
            "STUDENT", relations=[("ENROLLED_IN", "from", True)]
        )

        assert len(calls) == 1
        assert sorted(calls[0]) == sorted([ada.id, grace.id, alan.id])
        by_id = {s.id: s for s in students}
        [enrolled] = by_id[ada.id].relations_from
        assert enrolled.to_entity_id == course.id
        assert enrolled.to_entity.values == {"code": "MATH101"}
        assert by_id[grace.id].relations_from == []
        assert by_id[alan.id].relations_from == []
        assert by_id[ada.id].relations_to is None

    @pytest.mark.asyncio
    async def test_find_by_type_merges_relation_kinds(self, db, entities):
        relations = RelationStore(db)
        course = await entities.create("COURSE", name="Algebra")
        student = await entities.create("STUDENT")
        teacher = await entities.create("TEACHER")
        enrollment = await relations.link(student.id, course.id, "ENROLLED_IN")
        await relations.deactivate(enrollment.id)
        teaching = await relations.link(teacher.id, course.id, "TEACHES")

        [loaded] = await entities.find_by_type(
            "COURSE",
            relations=[
                ("ENROLLED_IN", "to", True),
                ("ENROLLED_IN", "to", False),
                ("TEACHES", "to", True),
            ],
        )

        by_id = {r.id: r for r in loaded.relations_to}
        assert sorted(by_id) == sorted([enrollment.id, teaching.id])
        assert by_id[enrollment.id].is_active is False
        assert by_id[teaching.id].from_entity.id == teacher.id
        assert loaded.relations_from is None
