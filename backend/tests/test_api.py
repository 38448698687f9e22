import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client(settings):
    from cdrnet.main import app

    with TestClient(app) as test_client:
        yield test_client


def _event(record_id, caller, receiver, timestamp="2024-03-01T09:00:00Z", event_type="call"):
    return {
        "recordId": record_id,
        "eventType": event_type,
        "timestampUtc": timestamp,
        "callerNumber": caller,
        "receiverNumber": receiver,
        "callDurationSeconds": 45,
    }


@pytest.fixture
def recorded(client):
    events = [_event(f"a{i}", "111", "222") for i in range(12)]
    events += [_event(f"b{i}", "+1 333", "222", timestamp="2024-03-05T09:00:00Z") for i in range(3)]
    response = client.post("/api/events", json={"datasetId": "case-1", "events": events})
    assert response.status_code == 200
    return response.json()


def test_healthcheck(client):
    assert client.get("/").json() == {"status": "ok"}


def test_record_events(recorded, client):
    assert recorded == {"success": True, "datasetId": "case-1", "recorded": 15, "skipped": 0}

    again = client.post("/api/events", json={"datasetId": "case-1", "events": [_event("a0", "111", "222")]})
    assert again.json()["skipped"] == 1


def test_network_example(recorded, client):
    response = client.get("/api/network", params={"minEdgeWeight": 10})

    assert response.status_code == 200
    body = response.json()
    assert body["datasetScope"] == "case-1"
    assert [node["id"] for node in body["graph"]["nodes"]] == ["111", "222"]
    assert body["graph"]["edges"][0]["weight"] == 12
    assert body["stats"]["nodeCount"] == 2
    assert body["stats"]["isolates"] == 0
    assert body["truncated"] is False


def test_network_filters(recorded, client):
    response = client.get(
        "/api/network",
        params={"datasetScope": "case-1", "from": "2024-03-02T00:00:00Z", "minEdgeWeight": 1},
    )

    assert response.status_code == 200
    assert [node["id"] for node in response.json()["graph"]["nodes"]] == ["+1333", "222"]


def test_network_limit_nodes(recorded, client):
    response = client.get("/api/network", params={"minEdgeWeight": 1, "limitNodes": 2})

    body = response.json()
    assert body["truncated"] is True
    assert body["truncationReason"] == "node limit exceeded: kept top 2 of 3 by weighted degree"


def test_network_rejects_bad_queries(recorded, client):
    inverted = client.get("/api/network", params={"from": "2024-03-05T00:00:00Z", "to": "2024-03-01T00:00:00Z"})
    assert inverted.status_code == 400

    malformed = client.get("/api/network", params={"from": "yesterday"})
    assert malformed.status_code == 400

    bad_weight = client.get("/api/network", params={"minEdgeWeight": 0})
    assert bad_weight.status_code == 400

    bad_type = client.get("/api/network", params={"eventType": "fax"})
    assert bad_type.status_code == 400


def test_network_without_data_is_404(client):
    response = client.get("/api/network")

    assert response.status_code == 404
    assert "No dataset selected" in response.json()["detail"]


def test_network_with_no_matching_events_is_404(recorded, client):
    response = client.get("/api/network", params={"eventType": "sms"})
    assert response.status_code == 404


def test_datasets(recorded, client):
    response = client.get("/api/network/datasets")

    assert response.status_code == 200
    assert [item["datasetId"] for item in response.json()] == ["case-1"]
    assert response.json()[0]["eventCount"] == 15
