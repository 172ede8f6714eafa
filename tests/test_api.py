from __future__ import annotations

from rewardgate.integrations.token_client import TransferRejected, TransferTimeout

from conftest import ALICE, BOB, CAROL, HOUR, admin_headers


def _claim(api, wallet, score, ip="198.51.100.7"):
    return api.post(
        "/api/public/claim",
        json={"wallet": wallet, "score": score},
        headers={"X-Forwarded-For": ip},
    )


def test_health(api):
    res = api.get("/health")
    assert res.status_code == 200
    assert res.json()["ok"] is True
    assert res.headers["X-Content-Type-Options"] == "nosniff"
    assert res.headers["Cache-Control"] == "no-store"


def test_claim_success(api):
    res = _claim(api, ALICE, 10000)
    assert res.status_code == 200
    body = res.json()
    assert body["status"] == "success"
    assert body["state"] == "SETTLED"
    assert body["amount"] == "1.0000"
    assert body["txHash"].startswith("0x")
    assert "reason" not in body


def test_claim_invalid_input(api):
    res = _claim(api, "nope", 100)
    assert res.status_code == 400
    assert res.json()["reason"] == "INVALID_REQUEST"

    res = api.post("/api/public/claim", json={"wallet": ALICE})
    assert res.status_code == 400


def test_claim_cooldown(api):
    assert _claim(api, ALICE, 100, ip="198.51.100.1").status_code == 200
    res = _claim(api, ALICE, 100, ip="198.51.100.2")
    assert res.status_code == 429
    assert res.json()["reason"] == "COOLDOWN_ACTIVE"


def test_claim_origin_throttle_uses_forwarded_address(api):
    assert _claim(api, ALICE, 100, ip="203.0.113.9, 10.0.0.1").status_code == 200
    res = _claim(api, BOB, 100, ip="203.0.113.9")
    assert res.status_code == 429
    assert res.json()["reason"] == "ORIGIN_THROTTLED"

    # a minute later the same address may claim again
    api.ctx.clock.advance(60_000)
    assert _claim(api, BOB, 100, ip="203.0.113.9").status_code == 200


def test_claim_cap_exceeded(api):
    assert _claim(api, ALICE, 10000, ip="198.51.100.1").status_code == 200
    api.ctx.clock.advance(2 * HOUR)
    res = _claim(api, ALICE, 1, ip="198.51.100.2")
    assert res.status_code == 403
    assert res.json()["reason"] == "PERIOD_CAP_EXCEEDED"


def test_claim_transfer_failure(api, transmitter):
    transmitter.script = [TransferRejected("reverted")]
    res = _claim(api, ALICE, 100)
    assert res.status_code == 502
    assert res.json() == {
        "status": "rejected",
        "state": "FAILED",
        "reason": "TRANSFER_FAILED",
        "detail": "Token transfer failed.",
    }


def test_balance(api):
    res = api.get("/api/public/balance")
    assert res.status_code == 200
    assert res.json() == {"balance": "42.5", "cached": False}


def test_admin_requires_key(api):
    assert api.get("/api/admin/state").status_code == 401
    assert api.get("/api/admin/state", headers={"X-API-Key": "wrong"}).status_code == 401
    assert api.post("/api/admin/withdraw", json={"to": BOB, "amount": "1"}).status_code == 401


def test_admin_state_and_events(api):
    _claim(api, ALICE, 2500)
    state = api.get("/api/admin/state", headers=admin_headers())
    assert state.status_code == 200
    assert state.json()["claimants"][ALICE]["total_claimed"] == "0.2500"

    events = api.get("/api/admin/events", params={"limit": 5}, headers=admin_headers())
    assert [e["claimant"] for e in events.json()] == [ALICE]
    assert api.get("/api/admin/events", params={"limit": 0}, headers=admin_headers()).status_code == 422


def test_admin_withdraw(api):
    res = api.post("/api/admin/withdraw", json={"to": CAROL, "amount": "12.5"}, headers=admin_headers())
    assert res.status_code == 200
    assert res.json()["amount"] == "12.5000"

    over = api.post("/api/admin/withdraw", json={"to": CAROL, "amount": 990}, headers=admin_headers())
    assert over.status_code == 403


def test_pending_transfer_resolved_by_operator(api, transmitter):
    transmitter.script = [TransferTimeout("no receipt", tx_ref="0xcafe")]
    res = _claim(api, ALICE, 2500)
    assert res.status_code == 202
    body = res.json()
    assert body["status"] == "pending"
    assert body["reason"] == "TRANSFER_UNKNOWN"
    correlation_id = body["correlation_id"]

    listed = api.get("/api/admin/pending", headers=admin_headers()).json()
    assert listed[correlation_id]["tx_ref"] == "0xcafe"

    url = f"/api/admin/pending/{correlation_id}/resolve"
    done = api.post(url, json={"outcome": "confirmed"}, headers=admin_headers())
    assert done.status_code == 200
    assert done.json()["txHash"] == "0xcafe"

    assert api.post(url, json={"outcome": "confirmed"}, headers=admin_headers()).status_code == 404
    assert api.get("/api/admin/pending", headers=admin_headers()).json() == {}


def test_resolve_without_reference_is_bad_request(api, transmitter):
    transmitter.script = ["hang"]
    api.ctx.orchestrator.transfer_timeout_sec = 0.05
    correlation_id = _claim(api, ALICE, 2500).json()["correlation_id"]

    res = api.post(f"/api/admin/pending/{correlation_id}/resolve", json={"outcome": "confirmed"},
                   headers=admin_headers())
    assert res.status_code == 400
    bad = api.post(f"/api/admin/pending/{correlation_id}/resolve", json={"outcome": "maybe"},
                   headers=admin_headers())
    assert bad.status_code == 422


def test_admin_reset(api):
    _claim(api, ALICE, 10000)
    res = api.post("/api/admin/reset", headers=admin_headers())
    assert res.status_code == 200
    assert res.json() == {"ok": True, "period": "2025-01-15", "claimants_reset": 1}

    state = api.get("/api/admin/state", headers=admin_headers()).json()
    assert state["claimants"][ALICE]["total_claimed"] == "0.0000"
    assert state.get("origins", {}) == {}


def test_admin_config_hides_secrets(api):
    res = api.get("/api/admin/config", headers=admin_headers())
    assert res.status_code == 200
    body = res.json()
    assert body["profiles"]["claim"]["conversion_rate"] == "0.0001"
    assert "ADMIN_API_KEY" not in res.text and "test-admin-key" not in res.text


def test_claim_with_huge_score_is_bad_request(api):
    res = _claim(api, ALICE, 1e30, ip="198.51.100.50")
    assert res.status_code == 400
    assert res.json()["reason"] == "INVALID_REQUEST"
    # the rejected request did not throttle its address
    assert _claim(api, BOB, 100, ip="198.51.100.50").status_code == 200


def test_admin_key_with_non_ascii_characters_is_unauthorized(api):
    res = api.get("/api/admin/state", headers={"X-API-Key": "ключ".encode("utf-8")})
    assert res.status_code == 401
