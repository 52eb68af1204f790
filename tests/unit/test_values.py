"""
Unit tests for typed-value marshalling and the value store.

Tests cover:
- Column selection and coercion per data type
- Runtime-type fallback when coercion fails
- Coalescing order
- Upsert idempotence and typed-column exclusivity
- Strict reads and empty-value skipping
"""

import tempfile
from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from campus.eav_server.errors import NotFoundError
from campus.eav_server.schema.types import DataType
from campus.eav_server.schema.values import (
    ValueColumn,
    coalesce,
    infer_data_type,
    is_empty,
    marshal,
    read_typed,
)
from campus.eav_server.store import AttributeRegistry, Database, EntityStore, ValueStore


class TestMarshal:
    """Tests for marshal() and friends."""

    def test_declared_type_selects_column(self):
        """Each declared type lands in its own column."""
        assert marshal("Ada", DataType.STRING).column is ValueColumn.STRING
        assert marshal("a@b.edu", DataType.EMAIL).column is ValueColumn.STRING
        assert marshal(3.9, DataType.NUMBER).column is ValueColumn.NUMBER
        assert marshal(True, DataType.BOOLEAN).column is ValueColumn.BOOL
        assert marshal("2001-02-03", DataType.DATE).column is ValueColumn.DATE
        assert marshal("2001-02-03T04:05:06Z", DataType.DATETIME).column is ValueColumn.DATETIME
        assert marshal("long text", DataType.TEXT).column is ValueColumn.TEXT

    def test_strings_are_coerced_to_declared_type(self):
        """Numeric, boolean and ISO strings are coerced."""
        assert marshal("3.5", DataType.NUMBER).value == 3.5
        assert marshal("true", DataType.BOOLEAN).value is True
        assert marshal("No", DataType.BOOLEAN).value is False
        assert marshal("2001-02-03", DataType.DATE).value == date(2001, 2, 3)
        assert marshal("2001-02-03T04:05:06Z", DataType.DATETIME).value == datetime(
            2001, 2, 3, 4, 5, 6, tzinfo=timezone.utc
        )

    def test_uncoercible_value_falls_back_to_runtime_type(self):
        """A value that cannot be coerced is stored, never rejected."""
        typed = marshal("not a number", DataType.NUMBER)
        assert typed.column is ValueColumn.STRING
        assert typed.value == "not a number"

    def test_runtime_type_without_declared_type(self):
        """Without a declared type the runtime type decides."""
        assert marshal(True).column is ValueColumn.BOOL
        assert marshal(7).column is ValueColumn.NUMBER
        assert marshal(date(2020, 1, 1)).column is ValueColumn.DATE
        assert marshal(datetime(2020, 1, 1, 12)).column is ValueColumn.DATETIME
        assert marshal("x").column is ValueColumn.STRING

    def test_infer_data_type_bool_before_number(self):
        """bool is a subclass of int but infers as BOOLEAN."""
        assert infer_data_type(False) is DataType.BOOLEAN
        assert infer_data_type(0) is DataType.NUMBER

    def test_columns_have_exactly_one_value(self):
        """columns() yields six keys, one of them populated."""
        columns = marshal(42, DataType.NUMBER).columns()
        assert len(columns) == 6
        assert [k for k, v in columns.items() if v is not None] == ["value_number"]

    def test_is_empty(self):
        """None, empty and whitespace-only strings are empty."""
        assert is_empty(None)
        assert is_empty("")
        assert is_empty("   ")
        assert not is_empty(0)
        assert not is_empty(False)


class TestCoalesce:
    """Tests for coalesce() and read_typed()."""

    def _row(self, **populated):
        row = {column.value: None for column in ValueColumn}
        row.update(populated)
        return row

    def test_integral_numbers_come_back_as_int(self):
        assert coalesce(self._row(value_number=4.0)) == 4
        assert isinstance(coalesce(self._row(value_number=4.0)), int)
        assert coalesce(self._row(value_number=3.9)) == 3.9

    def test_order_when_more_than_one_column_is_set(self):
        """String wins over every other column; no error is raised."""
        row = self._row(value_string="s", value_number=1.0, value_text="t")
        assert coalesce(row) == "s"
        assert coalesce(self._row(value_bool=1, value_text="t")) is True

    def test_empty_row_is_none(self):
        assert coalesce(self._row()) is None

    def test_read_typed_mismatch_is_none(self):
        """Strict read returns None when the declared column is empty."""
        row = self._row(value_string="3.9")
        assert read_typed(row, DataType.NUMBER) is None
        assert read_typed(row, DataType.STRING) == "3.9"

    def test_dates_decode(self):
        assert coalesce(self._row(value_date="2024-05-01")) == date(2024, 5, 1)


class TestValueStore:
    """Tests for ValueStore."""

    @pytest.fixture
    def db(self):
        """Create an initialized database in a temporary directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            database = Database(str(Path(tmpdir) / "campus.db"), wal_mode=False)
            yield database

    @pytest.fixture
    def stores(self, db):
        return AttributeRegistry(db), EntityStore(db), ValueStore(db)

    def _value_rows(self, db, entity_id):
        with db.connect() as conn:
            return conn.execute(
                "SELECT * FROM entity_values WHERE entity_id = ?", (entity_id,)
            ).fetchall()

    @pytest.mark.asyncio
    async def test_set_value_twice_leaves_one_row(self, db, stores):
        """Setting the same value twice is idempotent."""
        registry, entities, values = stores
        student = await entities.create("STUDENT")
        gpa = await registry.resolve_or_create("gpa", "GPA", DataType.NUMBER, "ACADEMIC")

        await values.set_value(student.id, gpa.id, 3.9)
        await values.set_value(student.id, gpa.id, 3.9)

        rows = self._value_rows(db, student.id)
        assert len(rows) == 1
        assert rows[0]["value_number"] == 3.9
        assert await values.read_values(student.id) == {"gpa": 3.9}

    @pytest.mark.asyncio
    async def test_changed_data_type_nulls_previous_column(self, db, stores):
        """Exactly one typed column is populated after a data type change."""
        registry, entities, values = stores
        course = await entities.create("COURSE", name="Algebra")
        credits = await registry.resolve_or_create("credits", "Credits", DataType.STRING, "ACADEMIC")
        await values.set_value(course.id, credits.id, "three")

        await registry.resolve_or_create("credits", "Credits", DataType.NUMBER, "ACADEMIC")
        await values.set_value(course.id, credits.id, 3)

        rows = self._value_rows(db, course.id)
        assert len(rows) == 1
        populated = [
            column.value for column in ValueColumn if rows[0][column.value] is not None
        ]
        assert populated == ["value_number"]
        assert await values.read_value(course.id, "credits") == 3

    @pytest.mark.asyncio
    async def test_read_value_is_strict(self, stores):
        """A stored column that no longer matches the data type reads as None."""
        registry, entities, values = stores
        student = await entities.create("STUDENT")
        year = await registry.resolve_or_create("year", "Year", DataType.STRING, "ACADEMIC")
        await values.set_value(student.id, year.id, "sophomore")

        await registry.resolve_or_create("year", "Year", DataType.NUMBER, "ACADEMIC")

        assert await values.read_value(student.id, "year") is None
        # The tolerant reader still sees it
        assert (await values.read_values(student.id))["year"] == "sophomore"

    @pytest.mark.asyncio
    async def test_empty_values_are_not_written(self, db, stores):
        registry, entities, values = stores
        student = await entities.create("STUDENT")
        phone = await registry.resolve_or_create("phone", "Phone", DataType.PHONE, "CONTACT")

        assert await values.set_value(student.id, phone.id, "  ") is None
        assert self._value_rows(db, student.id) == []

    @pytest.mark.asyncio
    async def test_set_many_registers_unknown_names(self, stores):
        """Unknown attribute names are created from the value's runtime type."""
        registry, entities, values = stores
        student = await entities.create("STUDENT")

        result = await values.set_many(
            student.id, {"firstName": "Ada", "gpa": 3.9, "nickname": ""}
        )

        assert result.written == ["firstName", "gpa"]
        assert result.skipped == ["nickname"]
        gpa = await registry.get_by_name("gpa")
        assert gpa.data_type is DataType.NUMBER
        assert gpa.entity_types == ["STUDENT"]
        assert await registry.get_by_name("nickname") is None

    @pytest.mark.asyncio
    async def test_list_values_exposes_columns(self, stores):
        registry, entities, values = stores
        student = await entities.create("STUDENT")
        await values.set_many(student.id, {"isInternational": True})

        [value] = await values.list_values(student.id)
        assert value.attribute_name == "isInternational"
        assert value.populated == ["value_bool"]
        assert value.value is True

    @pytest.mark.asyncio
    async def test_unknown_entity_raises(self, stores):
        registry, entities, values = stores
        attribute = await registry.resolve_or_create("gpa", data_type="NUMBER")

        with pytest.raises(NotFoundError):
            await values.set_value("missing", attribute.id, 1)
        with pytest.raises(NotFoundError):
            await values.set_many("missing", {"gpa": 1})
