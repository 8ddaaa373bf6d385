"""Unit and property tests for the StatusQueryService."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from hypothesis import given, settings, strategies as st

from src.content_pipeline.status import (
    InMemoryItemStore,
    Stage,
    StatusQueryService,
    StatusTransitionService,
)


def run_async(coro):
    return asyncio.run(coro)


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def queries(store) -> StatusQueryService:
    return StatusQueryService(store)


def _seed(store, item_id: str, raw_stage: str, hours_ago: float = 0.0) -> None:
    updated_at = NOW - timedelta(hours=hours_ago)
    run_async(
        store.seed_raw(
            item_id,
            raw_stage,
            created_at=updated_at,
            updated_at=updated_at,
        )
    )


class TestHistory:

    def test_newest_first_with_limit(self, store, queries):
        _seed(store, "item-1", "discovered")
        service = StatusTransitionService(store)
        for target in (Stage.IDEA_SELECTED, Stage.SCRIPT_GENERATING, Stage.SCRIPT_GENERATED):
            run_async(service.transition("item-1", target, trigger_event="worker"))

        history = run_async(queries.history("item-1"))
        assert [entry.new_stage for entry in history] == [
            Stage.SCRIPT_GENERATED,
            Stage.SCRIPT_GENERATING,
            Stage.IDEA_SELECTED,
        ]

        limited = run_async(queries.history("item-1", limit=2))
        assert [entry.new_stage for entry in limited] == [
            Stage.SCRIPT_GENERATED,
            Stage.SCRIPT_GENERATING,
        ]

    def test_unknown_item_has_empty_history(self, queries):
        assert run_async(queries.history("missing")) == []

    def test_limit_must_be_positive(self, queries):
        with pytest.raises(ValueError):
            run_async(queries.history("item-1", limit=0))


class TestListByStage:

    def test_pagination(self, store, queries):
        for index in range(5):
            _seed(store, f"item-{index}", "rendering", hours_ago=index)
        _seed(store, "other", "completed")

        pages = [
            run_async(queries.list_by_stage(Stage.RENDERING, page=page, page_size=2))
            for page in (1, 2, 3)
        ]

        assert [[item.id for item in p.items] for p in pages] == [
            ["item-0", "item-1"],
            ["item-2", "item-3"],
            ["item-4"],
        ]
        assert [p.has_more for p in pages] == [True, True, False]
        assert all(p.total_count == 5 for p in pages)

    def test_page_past_the_end_is_empty(self, store, queries):
        _seed(store, "item-1", "rendering")

        page = run_async(queries.list_by_stage(Stage.RENDERING, page=3, page_size=10))

        assert page.items == []
        assert page.total_count == 1
        assert not page.has_more

    def test_legacy_rows_are_listed_under_canonical_stage(self, store, queries):
        _seed(store, "legacy", "idea", hours_ago=1)
        _seed(store, "modern", "discovered")

        page = run_async(queries.list_by_stage(Stage.DISCOVERED))

        assert [item.id for item in page.items] == ["modern", "legacy"]
        assert all(item.stage == Stage.DISCOVERED for item in page.items)

    @pytest.mark.parametrize("page,page_size", [(0, 10), (1, 0), (-1, 5)])
    def test_invalid_pagination(self, queries, page, page_size):
        with pytest.raises(ValueError):
            run_async(queries.list_by_stage(Stage.RENDERING, page, page_size))


class TestStageDistribution:

    def test_every_stage_present_and_legacy_folded(self, store, queries):
        _seed(store, "a", "discovered")
        _seed(store, "b", "idea")
        _seed(store, "c", "approved")
        _seed(store, "d", "rendering")

        distribution = run_async(queries.stage_distribution())

        assert set(distribution) == set(Stage)
        assert distribution[Stage.DISCOVERED] == 2
        assert distribution[Stage.IDEA_SELECTED] == 1
        assert distribution[Stage.RENDERING] == 1
        assert distribution[Stage.COMPLETED] == 0
        assert sum(distribution.values()) == 4

    def test_unrecognized_rows_are_skipped(self, store, queries):
        _seed(store, "a", "discovered")
        _seed(store, "b", "published")

        distribution = run_async(queries.stage_distribution())

        assert sum(distribution.values()) == 1

    @given(
        raw_stages=st.lists(
            st.sampled_from(
                [stage.value for stage in Stage] + ["idea", "approved", "script_rejected"]
            ),
            max_size=25,
        )
    )
    @settings(max_examples=100)
    def test_sum_equals_item_count(self, raw_stages: List[str]) -> None:
        store = InMemoryItemStore()
        queries = StatusQueryService(store)

        async def test():
            for index, raw in enumerate(raw_stages):
                await store.seed_raw(f"item-{index}", raw)
            distribution = await queries.stage_distribution()
            assert set(distribution) == set(Stage)
            assert sum(distribution.values()) == len(raw_stages)

        run_async(test())


class TestStuckItems:

    def test_only_old_processing_items_oldest_first(self, store, queries):
        _seed(store, "render-old", "rendering", hours_ago=48)
        _seed(store, "script-old", "script_generating", hours_ago=30)
        _seed(store, "render-fresh", "rendering", hours_ago=2)
        _seed(store, "ready-old", "assets_ready", hours_ago=72)

        stuck = run_async(queries.stuck_items(threshold_hours=24, now=NOW))

        assert [item.id for item in stuck] == ["render-old", "script-old"]

    def test_custom_processing_stages(self, store):
        queries = StatusQueryService(store, processing_stages=[Stage.ASSETS_READY])
        _seed(store, "ready-old", "assets_ready", hours_ago=72)
        _seed(store, "render-old", "rendering", hours_ago=48)

        stuck = run_async(queries.stuck_items(threshold_hours=24, now=NOW))

        assert [item.id for item in stuck] == ["ready-old"]

    def test_negative_threshold(self, queries):
        with pytest.raises(ValueError):
            run_async(queries.stuck_items(threshold_hours=-1))

    @pytest.mark.parametrize("threshold", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_threshold(self, queries, threshold):
        with pytest.raises(ValueError):
            run_async(queries.stuck_items(threshold_hours=threshold))

    def test_threshold_older_than_any_timestamp(self, store, queries):
        _seed(store, "ancient", "rendering", hours_ago=24 * 3650)

        assert run_async(queries.stuck_items(threshold_hours=1e12, now=NOW)) == []

    @given(
        ages=st.lists(st.floats(min_value=0, max_value=200), max_size=10),
        lower=st.floats(min_value=0, max_value=100),
        extra=st.floats(min_value=0, max_value=100),
    )
    @settings(max_examples=100)
    def test_raising_threshold_never_adds_items(
        self,
        ages: List[float],
        lower: float,
        extra: float,
    ) -> None:
        store = InMemoryItemStore()
        queries = StatusQueryService(store)

        async def test():
            for index, age in enumerate(ages):
                updated_at = NOW - timedelta(hours=age)
                await store.seed_raw(
                    f"item-{index}",
                    "rendering",
                    created_at=updated_at,
                    updated_at=updated_at,
                )
            loose = await queries.stuck_items(threshold_hours=lower, now=NOW)
            strict = await queries.stuck_items(threshold_hours=lower + extra, now=NOW)
            assert {i.id for i in strict} <= {i.id for i in loose}

        run_async(test())


class TestCheckItemsExist:

    def test_partition(self, store, queries):
        _seed(store, "a", "discovered")
        _seed(store, "b", "rendering")

        check = run_async(queries.check_items_exist(["a", "b", "c", "a"]))

        assert check.valid == {"a", "b"}
        assert check.invalid == {"c"}

    def test_empty_input(self, queries):
        check = run_async(queries.check_items_exist([]))

        assert check.valid == set()
        assert check.invalid == set()
