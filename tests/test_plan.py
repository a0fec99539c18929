"""Tests for plan building, immutability and execution."""

from unittest.mock import MagicMock

import pytest

from tidywh.errors import QueryTimeout, UnknownColumn
from tidywh.plan import (
    MaterializedResult,
    ResultColumn,
    TableRef,
    aggregate,
    col,
    desc,
    n,
    table,
)
from tidywh.plan.expr import Aggregate, Column, SortKey


class TestExpressions:
    def test_no_truth_value(self):
        with pytest.raises(TypeError):
            bool(col("a") > 1)
        with pytest.raises(TypeError):
            if col("a") == 1:
                pass

    def test_columns_in_first_seen_order(self):
        expr = (col("b") > 1) & (col("a") + col("b") < col("c"))
        assert expr.columns() == ("b", "a", "c")

    def test_has_aggregate(self):
        assert (col("a").sum() > 1).has_aggregate()
        assert not (col("a") > 1).has_aggregate()

    def test_col_rejects_empty_name(self):
        with pytest.raises(TypeError):
            col("")

    def test_aggregate_by_name(self):
        agg = aggregate("mean", "amount", na_rm=False)
        assert isinstance(agg, Aggregate)
        assert agg.function == "AVG"
        assert agg.input.name == "amount"
        assert agg.na_rm is False
        assert aggregate("n").input is None

    def test_unknown_aggregate(self):
        with pytest.raises(ValueError):
            aggregate("median", "amount")

    def test_desc(self):
        key = desc("total")
        assert isinstance(key, SortKey)
        assert key.descending
        assert isinstance(key.expr, Column)

    def test_sort_key_is_not_an_expression(self):
        with pytest.raises(TypeError):
            col("a") > desc("b")


class TestBuilding:
    def test_table_ref(self, sales):
        assert sales.table == TableRef("DB", "PUBLIC", "T")
        assert sales.columns == ("a", "b", "c")

    def test_table_ref_parse(self):
        assert TableRef.parse("SALES_DB.PUBLIC.STORES").name == "STORES"
        with pytest.raises(ValueError):
            TableRef.parse("STORES")

    def test_each_verb_appends_one_operation(self, sales):
        plan = sales.select("a", "b").filter(col("a") > 1).mutate(d=col("a") + 1)
        assert len(plan.operations) == 3
        assert plan.describe() == ["select(a, b)", "filter(a)", "mutate(d)"]

    def test_select_accepts_a_list_and_columns(self, sales):
        assert sales.select(["a", "b"]).compile() == sales.select(col("a"), "b").compile()

    def test_mutate_positional_form(self, sales):
        assert sales.mutate("d", col("a") + 1).compile() == sales.mutate(d=col("a") + 1).compile()

    def test_mutate_needs_expression(self, sales):
        with pytest.raises(TypeError):
            sales.mutate(d=1)

    def test_filter_needs_expression(self, sales):
        with pytest.raises(TypeError):
            sales.filter("a > 1")

    def test_summarise_needs_aggregate(self, sales):
        with pytest.raises(TypeError):
            sales.group_by("b").summarise(total=col("a") + 1)

    def test_summarise_accepts_mapping_and_triples(self, sales):
        plan = sales.group_by("b").summarise({"total": ("sum", "a", True)}, rows_seen=n())
        assert plan.compile().startswith("SELECT b, SUM(a) AS total, COUNT(*) AS rows_seen")

    def test_summarize_alias(self, sales):
        left = sales.group_by("b").summarize(total=col("a").sum())
        right = sales.group_by("b").summarise(total=col("a").sum())
        assert left.compile() == right.compile()

    def test_ungroup(self, sales):
        assert sales.group_by("b").ungroup() is sales


class TestImmutability:
    def test_verbs_do_not_mutate_receiver(self, sales):
        base = sales.select("a", "b")
        before = base.compile()

        filtered = base.filter(col("a") > 1)
        derived = base.mutate(z=col("a") + 1)

        assert base.compile() == before
        assert len(base.operations) == 1
        assert "WHERE" in filtered.compile()
        assert "WHERE" not in derived.compile()
        assert "z" not in filtered.compile()

    def test_branches_from_shared_prefix(self, sales):
        prefix = sales.filter(col("a") > 1)
        by_b = prefix.group_by("b").summarise(total=col("a").sum())
        by_c = prefix.group_by("c").summarise(total=col("a").sum())

        assert "GROUP BY b" in by_b.compile()
        assert "GROUP BY c" in by_c.compile()
        assert prefix.compile() == "SELECT *\nFROM DB.PUBLIC.T\nWHERE a > 1"

    def test_plans_are_frozen(self, sales):
        with pytest.raises(AttributeError):
            sales.operations = ()

    def test_compile_is_deterministic(self, sales):
        plan = sales.mutate(d=col("a") + 1).filter(col("d") > 1).arrange(desc("d"))
        assert plan.compile() == plan.compile()
        assert plan.compile() == sales.mutate(d=col("a") + 1).filter(col("d") > 1).arrange(desc("d")).compile()


class TestExecute:
    def test_runs_compiled_sql(self, sales):
        session = MagicMock()
        session.run_query.return_value = (
            [ResultColumn("b", "TEXT"), ResultColumn("total", "FIXED")],
            [("x", 3), ("y", 5)],
        )
        plan = sales.group_by("b").summarise(total=col("a").sum())

        result = plan.execute(session=session, timeout=30)

        session.run_query.assert_called_once_with(plan.compile(), timeout=30, cancel=None)
        assert isinstance(result, MaterializedResult)
        assert result.column_names == ["b", "total"]
        assert result.column("total") == [3, 5]

    def test_bound_session_and_limit(self):
        session = MagicMock()
        session.run_query.return_value = ([ResultColumn("a")], [(1,)])
        plan = table("DB", "PUBLIC", "T", columns=["a"], session=session)

        assert len(plan.collect(limit=1)) == 1
        sql = session.run_query.call_args[0][0]
        assert sql == "SELECT *\nFROM DB.PUBLIC.T\nLIMIT 1"

    def test_scope_errors_never_reach_the_warehouse(self, sales):
        session = MagicMock()
        with pytest.raises(UnknownColumn):
            sales.filter(col("missing") > 1).execute(session=session)
        session.run_query.assert_not_called()

    def test_no_session(self, sales):
        with pytest.raises(ValueError):
            sales.execute()

    def test_warehouse_errors_propagate(self, sales):
        session = MagicMock()
        session.run_query.side_effect = QueryTimeout("too slow")
        with pytest.raises(QueryTimeout):
            sales.execute(session=session)


class TestMaterializedResult:
    @pytest.fixture
    def result(self):
        return MaterializedResult(
            [ResultColumn("store", "TEXT"), ResultColumn("total", "FIXED")],
            [("A", 1), ("B", None)],
        )

    def test_records(self, result):
        assert result.to_records() == [{"store": "A", "total": 1}, {"store": "B", "total": None}]

    def test_unknown_column(self, result):
        with pytest.raises(KeyError):
            result.column("missing")

    def test_row_width_checked(self):
        with pytest.raises(ValueError):
            MaterializedResult([ResultColumn("a")], [(1, 2)])

    def test_to_csv(self, result, tmp_path):
        path = result.to_csv(tmp_path / "out" / "result.csv")
        assert path.read_text().splitlines() == ["store,total", "A,1", "B,"]

    def test_preview(self, result):
        preview = result.preview(limit=1)
        assert "store" in preview
        assert "... and 1 more rows" in preview
