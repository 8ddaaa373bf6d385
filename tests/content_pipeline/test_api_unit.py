"""Tests for the FastAPI surface of the content status service."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from src.content_pipeline.config import ContentPipelineSettings
from src.content_pipeline.main import build_container, create_app
from src.content_pipeline.status import InMemoryItemStore


def run_async(coro):
    return asyncio.run(coro)


@pytest.fixture
def settings() -> ContentPipelineSettings:
    return ContentPipelineSettings(
        database_url=None,
        event_sinks="logging,metrics",
        max_batch_size=3,
        page_size=2,
        max_page_size=3,
    )


@pytest.fixture
def container(settings, store, registry):
    return build_container(settings, store=store, registry=registry)


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as client:
        yield client


def _seed(store, item_id: str, raw_stage: str, hours_ago: float = 0.0) -> None:
    updated_at = datetime.now(timezone.utc) - timedelta(hours=hours_ago)
    run_async(
        store.seed_raw(item_id, raw_stage, created_at=updated_at, updated_at=updated_at)
    )


class TestProbes:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_ready(self, client):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json()["dependencies"]["database"] == "healthy"

    def test_metrics_refreshes_stage_gauge(self, client, store):
        _seed(store, "item-1", "rendering")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert 'content_items_by_stage{stage="rendering"} 1.0' in response.text


class TestTransitions:

    def test_valid_transition(self, client, store):
        _seed(store, "item-1", "assets_ready")

        response = client.post(
            "/items/item-1/transitions",
            json={"target_stage": "rendering", "actor": "render-worker"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["old_stage"] == "assets_ready"
        assert body["new_stage"] == "rendering"
        assert body["audit_entry_id"]

    def test_legacy_target_spelling_is_normalized(self, client, store):
        _seed(store, "item-1", "discovered")

        response = client.post(
            "/items/item-1/transitions", json={"target_stage": "Approved"}
        )

        assert response.status_code == 200
        assert response.json()["new_stage"] == "idea_selected"

    def test_unknown_target_stage(self, client, store):
        _seed(store, "item-1", "discovered")

        response = client.post(
            "/items/item-1/transitions", json={"target_stage": "published"}
        )

        assert response.status_code == 422
        assert run_async(store.get_stage("item-1")) == "discovered"

    def test_invalid_edge_is_conflict(self, client, store):
        _seed(store, "item-1", "script_generated")

        response = client.post(
            "/items/item-1/transitions", json={"target_stage": "discovered"}
        )

        assert response.status_code == 409
        assert response.json()["error_kind"] == "invalid_transition"

    def test_missing_item(self, client):
        response = client.post(
            "/items/missing/transitions", json={"target_stage": "rendering"}
        )

        assert response.status_code == 404

    def test_force_transition(self, client, store):
        _seed(store, "item-1", "failed")

        response = client.post(
            "/items/item-1/force-transition",
            json={"target_stage": "assets_ready", "reason": "retry render"},
        )

        assert response.status_code == 200
        history = client.get("/items/item-1/history").json()["entries"]
        assert history[0]["trigger_event"] == "force_update"
        assert history[0]["metadata"] == {"forced": True, "reason": "retry render"}

    def test_force_transition_requires_reason(self, client, store):
        _seed(store, "item-1", "failed")

        response = client.post(
            "/items/item-1/force-transition",
            json={"target_stage": "assets_ready", "reason": " "},
        )

        assert response.status_code == 422

    def test_allowed_transitions(self, client, store):
        _seed(store, "item-1", "rendering")

        response = client.get("/items/item-1/allowed-transitions")

        assert response.json() == {
            "item_id": "item-1",
            "allowed": ["completed", "failed"],
        }
        assert client.get("/items/missing/allowed-transitions").status_code == 404


class TestBatch:

    def test_batch_commits(self, client, store):
        _seed(store, "a", "discovered")
        _seed(store, "b", "assets_ready")

        response = client.post(
            "/transitions/batch",
            json={
                "transitions": [
                    {"item_id": "a", "target_stage": "idea_selected"},
                    {"item_id": "b", "target_stage": "rendering"},
                ]
            },
        )

        assert response.status_code == 200
        assert [r["new_stage"] for r in response.json()["results"]] == [
            "idea_selected",
            "rendering",
        ]

    def test_batch_abort_reports_index(self, client, store):
        _seed(store, "a", "discovered")

        response = client.post(
            "/transitions/batch",
            json={
                "transitions": [
                    {"item_id": "a", "target_stage": "idea_selected"},
                    {"item_id": "b", "target_stage": "rendering"},
                ]
            },
        )

        assert response.status_code == 404
        assert response.json()["index"] == 1
        assert response.json()["item_id"] == "b"
        assert run_async(store.get_stage("a")) == "discovered"

    def test_oversized_batch(self, client):
        transitions = [
            {"item_id": f"item-{i}", "target_stage": "idea_selected"} for i in range(4)
        ]

        response = client.post("/transitions/batch", json={"transitions": transitions})

        assert response.status_code == 422


class TestQueries:

    def test_list_by_stage_paginates(self, client, store):
        for index in range(3):
            _seed(store, f"item-{index}", "rendering", hours_ago=index)

        first = client.get("/stages/rendering/items").json()
        second = client.get("/stages/rendering/items", params={"page": 2}).json()

        assert [item["id"] for item in first["items"]] == ["item-0", "item-1"]
        assert first["has_more"] is True
        assert [item["id"] for item in second["items"]] == ["item-2"]
        assert second["has_more"] is False

    def test_page_size_is_capped(self, client, store):
        for index in range(5):
            _seed(store, f"item-{index}", "rendering")

        page = client.get("/stages/rendering/items", params={"page_size": 50}).json()

        assert page["page_size"] == 3

    def test_unknown_stage_in_path(self, client):
        assert client.get("/stages/published/items").status_code == 422

    def test_distribution(self, client, store):
        _seed(store, "a", "idea")
        _seed(store, "b", "discovered")

        distribution = client.get("/stages/distribution").json()

        assert distribution["discovered"] == 2
        assert len(distribution) == 11

    def test_stuck_items(self, client, store):
        _seed(store, "old", "rendering", hours_ago=30)
        _seed(store, "fresh", "rendering", hours_ago=1)

        response = client.get("/items/stuck")
        assert [item["id"] for item in response.json()["items"]] == ["old"]

        response = client.get("/items/stuck", params={"threshold_hours": 0.5})
        assert [item["id"] for item in response.json()["items"]] == ["old", "fresh"]

    @pytest.mark.parametrize("threshold", ["inf", "nan", "-1"])
    def test_stuck_items_rejects_bad_threshold(self, client, threshold):
        response = client.get("/items/stuck", params={"threshold_hours": threshold})

        assert response.status_code == 422

    def test_items_exist(self, client, store):
        _seed(store, "a", "discovered")

        response = client.post("/items/exists", json={"item_ids": ["a", "z"]})

        assert response.json() == {"valid": ["a"], "invalid": ["z"]}

    def test_graph(self, client):
        graph = client.get("/stages/graph").json()

        assert graph["transitions"]["rendering"] == ["completed", "failed"]
        assert graph["terminal"] == ["completed", "failed"]
        assert graph["processing"] == ["rendering", "script_generating"]
        assert graph["display_names"]["discovered"] == "New Idea"
