"""
Tests for the log ingestion, listing, scenario and delete endpoints.
"""

import json
import time

import pytest

from poslog_service.errors import StorageError  # type: ignore[import]
from poslog_service.query import LogFilter  # type: ignore[import]


def _post(client, **fields):
  body = {"level": "INFO", "label": "pos", "message": "hello"}
  body.update(fields)
  resp = client.post("/api/logs", json=body)
  assert resp.status_code == 201, resp.text
  return resp.json()["id"]


@pytest.fixture
def five_logs(authed_client):
  ids = []
  for minute, level in enumerate(["INFO", "ERROR", "WARN", "INFO", "DEBUG"]):
    ids.append(
      _post(
        authed_client,
        level=level,
        message=f"event {minute}",
        timestamp=f"2024-05-01T10:0{minute}:00Z",
        scenarioId="s1" if minute < 3 else "s2",
      )
    )
  return ids


# ============================================
# Ingestion
# ============================================

def test_ingest_is_open_and_returns_increasing_ids(client):
  first = _post(client)
  second = _post(client)
  assert second > first


def test_ingest_rejects_missing_required_fields_with_400(client):
  resp = client.post("/api/logs", json={"level": "INFO", "label": "pos"})
  assert resp.status_code == 400
  assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"

  resp = client.post("/api/logs", json={"level": "", "label": "pos", "message": "m"})
  assert resp.status_code == 400


def test_ingest_rejects_bad_scenario_id_and_timestamp(client):
  resp = client.post(
    "/api/logs", json={"level": "INFO", "label": "pos", "message": "m", "scenarioId": "a b"}
  )
  assert resp.status_code == 400

  resp = client.post(
    "/api/logs", json={"level": "INFO", "label": "pos", "message": "m", "timestamp": "soon"}
  )
  assert resp.status_code == 400


def test_ingest_treats_empty_optionals_as_absent(client, memory_storage):
  _post(client, source="", scenarioId="", timestamp="", extra_field="ignored")
  record = memory_storage.records[0]
  assert record.source is None
  assert record.scenario_id is None
  assert record.timestamp.endswith("Z")


def test_ingest_accepts_snake_case_scenario_id(client, memory_storage):
  _post(client, scenario_id="batch_7")
  assert memory_storage.records[0].scenario_id == "batch_7"


def test_context_round_trip(authed_client):
  _post(authed_client, context={"a": 1}, message="structured")
  _post(authed_client, context="plain words", message="plain")

  items = {i["message"]: i for i in authed_client.get("/api/logs").json()["items"]}
  assert json.loads(items["structured"]["context"]) == {"a": 1}
  assert items["plain"]["context"] == "plain words"


def test_future_timestamp_is_logged(client, caplog):
  with caplog.at_level("WARNING", logger="poslog_service.api"):
    _post(client, timestamp="2999-01-01T00:00:00Z")
  assert "in the future" in caplog.text


def test_oversized_body_is_rejected_with_413(client):
  resp = client.post(
    "/api/logs",
    json={"level": "INFO", "label": "pos", "message": "x" * 20_000},
  )
  assert resp.status_code == 413
  assert resp.json()["detail"]["code"] == "PAYLOAD_TOO_LARGE"


def _chunks(body: bytes, size: int = 4096):
  for start in range(0, len(body), size):
    yield body[start:start + size]


def test_chunked_body_over_cap_is_rejected_with_413(client, memory_storage):
  body = json.dumps({"level": "INFO", "label": "pos", "message": "x" * 50_000}).encode()
  resp = client.post(
    "/api/logs", content=_chunks(body), headers={"Content-Type": "application/json"}
  )
  assert resp.status_code == 413
  assert resp.json()["detail"]["code"] == "PAYLOAD_TOO_LARGE"
  assert memory_storage.records == []


def test_chunked_body_under_cap_is_accepted(client, memory_storage):
  body = json.dumps({"level": "INFO", "label": "pos", "message": "streamed"}).encode()
  resp = client.post(
    "/api/logs", content=_chunks(body, size=8), headers={"Content-Type": "application/json"}
  )
  assert resp.status_code == 201, resp.text
  assert memory_storage.records[0].message == "streamed"


@pytest.mark.parametrize(
  "timestamp", ["0001-01-01T00:00:00+01:00", "9999-12-31T23:59:59-01:00"]
)
def test_ingest_rejects_timestamp_outside_utc_calendar(client, timestamp):
  resp = client.post(
    "/api/logs", json={"level": "INFO", "label": "pos", "message": "m", "timestamp": timestamp}
  )
  assert resp.status_code == 400
  assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"


@pytest.mark.parametrize("field", ["message", "label", "source", "context"])
def test_ingest_rejects_nul_characters(client, memory_storage, field):
  body = {"level": "INFO", "label": "pos", "message": "m"}
  body[field] = "a\x00b"
  resp = client.post("/api/logs", json=body)
  assert resp.status_code == 400
  assert resp.json()["detail"]["code"] == "VALIDATION_ERROR"
  assert memory_storage.records == []


# ============================================
# Listing
# ============================================

def test_list_requires_session(client):
  resp = client.get("/api/logs")
  assert resp.status_code == 401
  assert resp.json()["authenticated"] is False


def test_list_accepts_api_key(client, five_logs):
  client.cookies.clear()
  resp = client.get("/api/logs", headers={"X-API-Key": "machine-key"})
  assert resp.status_code == 200
  assert len(resp.json()["items"]) == 5

  resp = client.get("/api/logs", headers={"X-API-Key": "wrong"})
  assert resp.status_code == 401


def test_list_orders_by_timestamp_desc(authed_client, five_logs):
  body = authed_client.get("/api/logs").json()
  stamps = [i["timestamp"] for i in body["items"]]
  assert stamps == sorted(stamps, reverse=True)
  assert body["hasMore"] is False
  assert body["nextCursor"] == str(max(five_logs))


def test_has_more_with_limit_two(authed_client, five_logs):
  pages = []
  for offset in (0, 2, 4):
    body = authed_client.get("/api/logs", params={"limit": 2, "offset": offset}).json()
    pages.append((len(body["items"]), body["hasMore"]))
  assert pages == [(2, True), (2, True), (1, False)]


def test_filters_return_a_subset(authed_client, five_logs):
  everything = {i["id"] for i in authed_client.get("/api/logs").json()["items"]}
  for params in (
    {"level": "ERROR,WARN"},
    {"scenarioId": "s2"},
    {"q": "EVENT 1"},
    {"start": "2024-05-01T10:01:00Z", "end": "2024-05-01T10:03:00Z"},
    {"label": "other"},
  ):
    subset = {i["id"] for i in authed_client.get("/api/logs", params=params).json()["items"]}
    assert subset <= everything


def test_filter_semantics(authed_client, five_logs):
  def ids(**params):
    return [i["id"] for i in authed_client.get("/api/logs", params=params).json()["items"]]

  assert len(ids(level="ERROR,WARN")) == 2
  assert len(ids(scenarioId="s2")) == 2
  # Case-insensitive text match.
  assert len(ids(q="EVENT 1")) == 1
  # Inclusive bounds.
  assert len(ids(start="2024-05-01T10:01:00Z", end="2024-05-01T10:03:00Z")) == 3
  assert ids(cursor=str(five_logs[2])) == list(reversed(five_logs[3:]))


def test_empty_page_has_no_cursor(authed_client):
  body = authed_client.get("/api/logs").json()
  assert body == {"items": [], "hasMore": False}


def test_list_rejects_unknown_and_malformed_params(authed_client):
  assert authed_client.get("/api/logs", params={"sort": "asc"}).status_code == 400
  assert authed_client.get("/api/logs", params={"limit": "9999"}).status_code == 400
  assert authed_client.get("/api/logs", params={"start": "last week"}).status_code == 400
  assert authed_client.get("/api/logs", params={"start": "9999-12-31T23:59:59-01:00"}).status_code == 400
  assert authed_client.get("/api/logs", params={"q": "\x00"}).status_code == 400
  assert authed_client.get("/api/logs", params={"offset": str(2 ** 63)}).status_code == 400


def test_text_filter_treats_wildcards_literally(authed_client):
  _post(authed_client, message="Promo 50%_OFF today")
  _post(authed_client, message="Promo 5000 off today")
  _post(authed_client, message="promo 50x off")

  items = authed_client.get("/api/logs", params={"q": "50%_off"}).json()["items"]
  assert [i["message"] for i in items] == ["Promo 50%_OFF today"]


# ============================================
# Scenarios
# ============================================

def test_list_scenarios_aggregates(authed_client):
  _post(authed_client, scenarioId="s1", level="INFO", timestamp="2024-05-01T10:00:00Z")
  _post(authed_client, scenarioId="s1", level="ERROR", timestamp="2024-05-01T10:01:00Z")
  _post(authed_client, scenarioId="s2", level="INFO", timestamp="2024-05-01T09:00:00Z")
  _post(authed_client, message="no scenario")

  scenarios = authed_client.get("/api/logs/scenarios").json()["scenarios"]
  by_id = {s["scenarioId"]: s for s in scenarios}

  assert set(by_id) == {"s1", "s2"}
  assert by_id["s1"]["logCount"] == 2
  assert set(by_id["s1"]["levels"]) == {"INFO", "ERROR"}
  assert by_id["s1"]["firstLogAt"] == "2024-05-01T10:00:00.000Z"
  assert by_id["s1"]["lastLogAt"] == "2024-05-01T10:01:00.000Z"
  assert by_id["s2"]["logCount"] == 1
  assert by_id["s2"]["levels"] == ["INFO"]
  assert scenarios[0]["scenarioId"] == "s1"


def test_list_scenarios_limit_validation(authed_client):
  assert authed_client.get("/api/logs/scenarios", params={"limit": 0}).status_code == 400
  assert authed_client.get("/api/logs/scenarios", params={"limit": 101}).status_code == 400


# ============================================
# Deletion
# ============================================

def test_delete_by_id_then_not_found(authed_client, five_logs):
  target = five_logs[0]
  assert authed_client.delete(f"/api/logs/{target}").status_code == 204

  remaining = {i["id"] for i in authed_client.get("/api/logs").json()["items"]}
  assert target not in remaining

  resp = authed_client.delete(f"/api/logs/{target}")
  assert resp.status_code == 404
  assert resp.json()["detail"]["code"] == "NOT_FOUND"


def test_delete_id_beyond_bigint_is_not_found(authed_client):
  resp = authed_client.delete(f"/api/logs/{2 ** 63}")
  assert resp.status_code == 404


def test_delete_all_reports_count(authed_client, five_logs):
  resp = authed_client.delete("/api/logs")
  assert resp.status_code == 200
  assert resp.json() == {"deleted": 5}
  assert authed_client.get("/api/logs").json()["items"] == []


def test_delete_requires_session(client, five_logs):
  client.cookies.clear()
  assert client.delete("/api/logs").status_code == 401
  assert client.delete(f"/api/logs/{five_logs[0]}").status_code == 401


# ============================================
# Storage failures
# ============================================

def test_storage_failure_is_a_generic_500(authed_client, memory_storage, monkeypatch, caplog):
  def broken(*args, **kwargs):
    raise StorageError("list failed: connection reset")

  monkeypatch.setattr(memory_storage, "fetch_logs", broken)

  with caplog.at_level("ERROR", logger="poslog_service.api"):
    resp = authed_client.get("/api/logs")

  assert resp.status_code == 500
  assert resp.json() == {"detail": {"code": "STORAGE_ERROR", "message": "Internal server error"}}
  assert "connection reset" in caplog.text


# ============================================
# Retention through the store
# ============================================

def test_purge_keys_on_created_at_not_timestamp(memory_storage):
  from poslog_service.models import LogCreate  # type: ignore[import]

  now = time.time()
  old_id = memory_storage.insert(
    LogCreate(level="INFO", label="l", message="old"), created_at=now - 10 * 86400
  )
  # Ancient event timestamp but ingested just now.
  recent_id = memory_storage.insert(
    LogCreate(level="INFO", label="l", message="backfilled", timestamp="2001-01-01T00:00:00Z"),
    created_at=now,
  )

  assert memory_storage.purge_older_than(7) == 1
  remaining = [r.id for r in memory_storage.fetch_logs(LogFilter(), 10, 0)]
  assert remaining == [recent_id]
  assert old_id not in remaining
