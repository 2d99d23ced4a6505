"""HTTP surface tests against in-memory backends."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from factories import plant_funnel, relationship
from trade_engine.api.network_routes import init_network_routes, network_router
from trade_engine.api.routes import init_routes, router
from trade_engine.detection.network_analysis import PatternDetectionService


@pytest.fixture
def client(orchestrator, graph_builder, fake_redis, relationships):
    app = FastAPI()
    app.include_router(router, prefix="/api")
    app.include_router(network_router, prefix="/api")
    init_routes(orchestrator, None, fake_redis)
    init_network_routes(graph_builder, PatternDetectionService(graph_builder, fake_redis), relationships)
    return TestClient(app)


def _start(client, a, b):
    resp = client.post("/api/trades", json={"player1_id": a, "player2_id": b})
    assert resp.status_code == 200, resp.text
    return resp.json()["session_id"]


def _add_credits(client, sid, uid, amount):
    return client.post(f"/api/trades/{sid}/entries", json={
        "acting_user_id": uid,
        "op": "add",
        "entry": {"item_type": "currency", "owner_id": uid, "amount": amount},
    })


class TestTradeRoutes:
    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["redis"] == "healthy"
        assert body["neo4j"] == {"status": "not_initialized"}

    def test_full_trade_over_http(self, client, players, inventory):
        sid = _start(client, players.alice, players.bob)
        assert _add_credits(client, sid, players.alice, 250).status_code == 200
        resp = client.post(f"/api/trades/{sid}/entries", json={
            "acting_user_id": players.bob,
            "entry": {"item_type": "asset", "owner_id": players.bob, "asset_ref": 201},
        })
        assert resp.status_code == 200

        first = client.post(f"/api/trades/{sid}/confirm", json={"acting_user_id": players.alice})
        assert first.json()["code"] == "still_waiting"
        done = client.post(f"/api/trades/{sid}/confirm", json={"acting_user_id": players.bob})
        assert done.status_code == 200
        assert done.json()["code"] == "completed"
        assert done.json()["success"] is True
        assert inventory.assets[201].owner_id == players.alice

        assert client.get(f"/api/trades/{sid}").json()["session"]["status"] == "completed"

    def test_status_codes_follow_result_codes(self, client, players, relationships):
        assert client.post("/api/trades", json={
            "player1_id": players.alice, "player2_id": players.alice,
        }).status_code == 400
        assert client.get("/api/trades/missing").status_code == 404

        relationships.put(relationship(players.alice, players.bob, risk=0.8))
        sid = _start(client, players.alice, players.bob)
        assert client.post("/api/trades", json={
            "player1_id": players.carol, "player2_id": players.bob,
        }).status_code == 409

        _add_credits(client, sid, players.alice, 10)
        client.post(f"/api/trades/{sid}/confirm", json={"acting_user_id": players.alice})
        blocked = client.post(f"/api/trades/{sid}/confirm", json={"acting_user_id": players.bob})
        assert blocked.status_code == 403
        assert blocked.json()["code"] == "fraud_blocked"

    def test_invalid_entry_rejected_by_schema(self, client, players):
        sid = _start(client, players.alice, players.bob)
        assert _add_credits(client, sid, players.alice, 0).status_code == 422

    def test_cancel_and_recover(self, client, players, trade_locks):
        sid = _start(client, players.alice, players.bob)
        resp = client.post(f"/api/trades/{sid}/cancel", json={"acting_user_id": players.alice})
        assert resp.json()["session"]["status"] == "cancelled"

        recovered = client.post(f"/api/trades/locks/{players.alice}/recover")
        assert recovered.status_code == 200
        assert recovered.json()["message"] == "Trade locks cleared"


class TestNetworkRoutes:
    def test_funnels_endpoint(self, client, relationships):
        collector, _ = plant_funnel(relationships)
        resp = client.get("/api/network/patterns/funnels", params={"window_days": 30})
        assert resp.status_code == 200
        assert resp.json()[0]["central_user_id"] == collector
        assert resp.json()[0]["suspicion_level"] == "HIGH"

    def test_edge_search(self, client, relationships):
        plant_funnel(relationships)
        resp = client.post("/api/network/edges/search", json={
            "filter": {"kind": "field", "field": "value_imbalance_ratio", "op": "gt", "value": 5},
            "limit": 4,
        })
        assert resp.status_code == 200
        assert resp.json()["count"] == 4

        bad = client.post("/api/network/edges/search", json={
            "filter": {"kind": "field", "field": "secret", "op": "eq", "value": 1},
        })
        assert bad.status_code == 400

    def test_user_network_and_cache_clear(self, client, relationships):
        collector, sources = plant_funnel(relationships)
        graph = client.get(f"/api/network/users/{sources[0]}", params={"hops": 1}).json()
        assert set(map(int, graph["nodes"])) == {sources[0], collector}

        cleared = client.delete("/api/network/cache").json()
        assert cleared == {"graphs_cleared": 0, "patterns_cleared": 0}

    def test_whitelist(self, client, players, relationships):
        assert client.put(
            f"/api/network/relationships/{players.alice}/{players.bob}/whitelist", json={},
        ).status_code == 404

        relationships.put(relationship(players.alice, players.bob))
        resp = client.put(
            f"/api/network/relationships/{players.bob}/{players.alice}/whitelist",
            json={"whitelisted": True},
        )
        assert resp.json()["whitelisted"] is True
