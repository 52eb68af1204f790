"""
Unit tests for the relation store.

Tests cover:
- Relation lifecycle (create, deactivate, reactivate, remove)
- Duplicate rows from plain link()
- Atomic link_or_reactivate()
- Metadata merge and tolerance of unparseable payloads
- Traversal with far-side values
"""

import tempfile
from pathlib import Path

import pytest

from campus.eav_server.errors import NotFoundError
from campus.eav_server.schema.metadata import EnrollmentMeta
from campus.eav_server.store import (
    Database,
    EntityStore,
    RelationStatus,
    RelationStore,
    ValueStore,
)


class TestRelationStore:
    """Tests for RelationStore."""

    @pytest.fixture
    def db(self):
        """Create an initialized database in a temporary directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            database = Database(str(Path(tmpdir) / "campus.db"), wal_mode=False)
            yield database

    @pytest.fixture
    def relations(self, db):
        return RelationStore(db)

    async def _pair(self, db):
        """A student and a course."""
        entities = EntityStore(db)
        student = await entities.create("STUDENT")
        course = await entities.create("COURSE", name="Algebra")
        return student, course

    def _rows(self, db, from_id, to_id):
        with db.connect() as conn:
            return conn.execute(
                "SELECT * FROM entity_relations WHERE from_entity_id = ? AND to_entity_id = ?",
                (from_id, to_id),
            ).fetchall()

    @pytest.mark.asyncio
    async def test_link_creates_active_relation(self, db, relations):
        student, course = await self._pair(db)

        relation = await relations.link(student.id, course.id, "enrolled_in", {"grade": "N/A"})

        assert relation.relation_type == "ENROLLED_IN"
        assert relation.status is RelationStatus.ACTIVE
        assert relation.end_date is None
        assert relation.start_date is not None
        fetched = await relations.get(relation.id)
        assert fetched.metadata == {"grade": "N/A"}
        assert isinstance(fetched.typed_metadata, EnrollmentMeta)

    @pytest.mark.asyncio
    async def test_link_twice_creates_two_rows(self, db, relations):
        """Plain link() does not check for an existing edge."""
        student, course = await self._pair(db)

        await relations.link(student.id, course.id, "ENROLLED_IN")
        await relations.link(student.id, course.id, "ENROLLED_IN")

        assert len(self._rows(db, student.id, course.id)) == 2

    @pytest.mark.asyncio
    async def test_link_unknown_entity(self, db, relations):
        student, _ = await self._pair(db)
        with pytest.raises(NotFoundError):
            await relations.link(student.id, "missing", "ENROLLED_IN")

    @pytest.mark.asyncio
    async def test_reactivation_round_trip(self, db, relations):
        """link -> deactivate -> link again leaves one active row."""
        student, course = await self._pair(db)

        first, created = await relations.link_or_reactivate(student.id, course.id, "ENROLLED_IN")
        assert created is True
        deactivated = await relations.deactivate(first.id)
        assert deactivated.status is RelationStatus.INACTIVE
        assert deactivated.end_date is not None

        second, created = await relations.link_or_reactivate(
            student.id, course.id, "ENROLLED_IN", {"grade": "N/A", "attendance": 0}
        )

        assert created is False
        assert second.id == first.id
        rows = self._rows(db, student.id, course.id)
        assert len(rows) == 1
        assert rows[0]["is_active"] == 1
        assert rows[0]["end_date"] is None
        assert (await relations.get(first.id)).metadata == {"grade": "N/A", "attendance": 0}

    @pytest.mark.asyncio
    async def test_deactivate_twice_keeps_end_date(self, db, relations):
        student, course = await self._pair(db)
        relation = await relations.link(student.id, course.id, "ENROLLED_IN")
        await relations.deactivate(relation.id)
        with db.connect() as conn:
            conn.execute("UPDATE entity_relations SET end_date = 1000 WHERE id = ?", (relation.id,))

        again = await relations.deactivate(relation.id)

        assert again.is_active is False
        assert again.end_date == 1000
        assert self._rows(db, student.id, course.id)[0]["end_date"] == 1000

    @pytest.mark.asyncio
    async def test_check_then_reactivate(self, db, relations):
        """The caller-side find_active / reactivate_or_update flow."""
        student, course = await self._pair(db)
        relation = await relations.link(student.id, course.id, "TEACHES")
        await relations.deactivate(relation.id)

        assert await relations.find_active(student.id, course.id, "TEACHES") is None
        reactivated = await relations.reactivate_or_update(relation.id, {"semester": "Fall"})

        assert reactivated.is_active is True
        found = await relations.find_active(student.id, course.id, "TEACHES")
        assert found.id == relation.id
        assert found.metadata == {"semester": "Fall"}

    @pytest.mark.asyncio
    async def test_deactivate_between(self, db, relations):
        student, course = await self._pair(db)
        await relations.link(student.id, course.id, "WORKS_IN")
        await relations.link(student.id, course.id, "WORKS_IN")

        assert await relations.deactivate_between(student.id, course.id, "WORKS_IN") == 2
        assert await relations.deactivate_between(student.id, course.id, "WORKS_IN") == 0
        history = await relations.find(student.id, course.id, "WORKS_IN")
        assert [r.is_active for r in history] == [False, False]

    @pytest.mark.asyncio
    async def test_set_active(self, db, relations):
        student, course = await self._pair(db)
        relation = await relations.link(student.id, course.id, "BELONGS_TO")

        off = await relations.set_active(relation.id, False)
        assert off.end_date is not None
        on = await relations.set_active(relation.id, True)
        assert on.is_active is True
        assert on.end_date is None

    @pytest.mark.asyncio
    async def test_remove(self, db, relations):
        student, course = await self._pair(db)
        relation = await relations.link(student.id, course.id, "ENROLLED_IN")

        assert await relations.remove(relation.id) is True
        assert await relations.get(relation.id) is None
        assert await relations.remove(relation.id) is False

    @pytest.mark.asyncio
    async def test_missing_relation_raises(self, relations):
        with pytest.raises(NotFoundError):
            await relations.deactivate("missing")
        with pytest.raises(NotFoundError):
            await relations.update_metadata("missing", {"grade": "A"})
        with pytest.raises(NotFoundError):
            await relations.reactivate_or_update("missing")

    @pytest.mark.asyncio
    async def test_update_metadata_merges(self, db, relations):
        student, course = await self._pair(db)
        relation = await relations.link(
            student.id, course.id, "ENROLLED_IN", {"grade": "N/A", "attendance": 100}
        )

        updated = await relations.update_metadata(relation.id, {"grade": "A-"})

        assert updated.metadata == {"grade": "A-", "attendance": 100}
        assert (await relations.get(relation.id)).metadata == {"grade": "A-", "attendance": 100}

    @pytest.mark.asyncio
    async def test_update_metadata_over_unparseable_payload(self, db, relations):
        """Corrupt metadata is treated as {} rather than raised."""
        student, course = await self._pair(db)
        relation = await relations.link(student.id, course.id, "SUBMITTED_FOR")
        with db.connect() as conn:
            conn.execute(
                "UPDATE entity_relations SET metadata = ? WHERE id = ?", ("{oops", relation.id)
            )

        assert (await relations.get(relation.id)).metadata == {}
        updated = await relations.update_metadata(relation.id, {"score": 9})
        assert updated.metadata == {"score": 9}

    @pytest.mark.asyncio
    async def test_traversal_loads_far_side_values(self, db, relations):
        student, course = await self._pair(db)
        values = ValueStore(db)
        await values.set_many(course.id, {"courseCode": "MATH101"})
        await values.set_many(student.id, {"firstName": "Ada"})
        active = await relations.link(student.id, course.id, "ENROLLED_IN")
        dropped = await relations.link(student.id, course.id, "ENROLLED_IN")
        await relations.deactivate(dropped.id)

        outgoing = await relations.relations_from(student.id, "ENROLLED_IN")
        assert [r.id for r in outgoing] == [active.id]
        assert outgoing[0].to_entity.id == course.id
        assert outgoing[0].to_entity.values == {"courseCode": "MATH101"}

        incoming = await relations.relations_to(course.id, active_only=False)
        assert {r.id for r in incoming} == {active.id, dropped.id}
        assert all(r.from_entity.values == {"firstName": "Ada"} for r in incoming)

        assert await relations.relations_from(student.id, "TEACHES") == []
