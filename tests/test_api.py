import httpx
import pytest
from fastapi.testclient import TestClient

from stocklens_store.container import DataLayer
from stocklens_store.main import create_app
from tests.conftest import MemorySecureStore
from tests.test_market_cache import DAILY, MONTHLY

PHOTO = b"\xff\xd8\xff\xe0fake-jpeg-body\xff\xd9"


def alpha_vantage(request: httpx.Request) -> httpx.Response:
    function = request.url.params["function"]
    if request.url.params["symbol"] == "FAIL":
        return httpx.Response(200, json={"Error Message": "Invalid API call."})
    body = DAILY if function == "TIME_SERIES_DAILY_ADJUSTED" else MONTHLY
    return httpx.Response(200, json=body)


@pytest.fixture
def client(config):
    def layer_factory(cfg):
        return DataLayer(
            cfg,
            secure_store=MemorySecureStore(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(alpha_vantage)),
        )

    app = create_app(config, layer_factory=layer_factory)
    with TestClient(app) as client:
        yield client


def upload(client, user_id="u-1", **form):
    return client.post(
        "/receipts",
        data=dict(form, user_id=user_id),
        files={"file": ("receipt.jpg", PHOTO, "image/jpeg")},
    )


class TestReceiptsApi:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_upload_then_list(self, client):
        response = upload(client, ocr_text="ITEMS 40.00\nTOTAL £45.67")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["encrypted"] is True
        assert data["total_amount"] == 45.67

        receipts = client.get("/users/u-1/receipts").json()
        assert len(receipts) == 1
        assert receipts[0]["total_amount"] == "45.67"
        assert receipts[0]["id"] == data["id"]

    def test_image_is_decrypted_on_request(self, client):
        receipt_id = upload(client, total_amount="12.5").json()["data"]["id"]
        path = client.get(f"/receipts/{receipt_id}/image").json()["path"]
        with open(path, "rb") as f:
            assert f.read() == PHOTO

    def test_patch_updates_amount(self, client):
        receipt_id = upload(client, total_amount="12.5").json()["data"]["id"]
        assert client.patch(f"/receipts/{receipt_id}", json={"total_amount": 99.9}).status_code == 200
        assert client.get(f"/receipts/{receipt_id}").json()["total_amount"] == "99.9"

    def test_patch_null_clears_a_field(self, client):
        receipt_id = upload(client, ocr_text="TOTAL 12.50").json()["data"]["id"]
        assert client.patch(f"/receipts/{receipt_id}", json={"ocr_data": None}).status_code == 200
        receipt = client.get(f"/receipts/{receipt_id}").json()
        assert receipt["ocr_data"] is None
        assert receipt["total_amount"] == "12.5"

    def test_missing_receipt_is_404(self, client):
        assert client.get("/receipts/999").status_code == 404
        assert client.patch("/receipts/999", json={"synced": 1}).status_code == 404
        assert client.get("/receipts/999/image").status_code == 404

    def test_delete_and_clear(self, client):
        first = upload(client).json()["data"]["id"]
        upload(client)
        upload(client, user_id="u-2")

        client.delete(f"/receipts/{first}")
        assert len(client.get("/users/u-1/receipts").json()) == 1

        client.delete("/users/u-1/receipts")
        assert client.get("/users/u-1/receipts").json() == []
        assert len(client.get("/users/u-2/receipts").json()) == 1


class TestUsersAndSettingsApi:

    def test_upsert_user_is_idempotent(self, client):
        first = client.put("/users/uid-1", json={"email": "ada@example.com", "full_name": "Ada"}).json()
        second = client.put("/users/uid-1", json={"email": "ada@example.com"}).json()
        assert first == second

    def test_email_owned_by_another_uid_is_a_conflict(self, client):
        client.put("/users/uid-1", json={"email": "ada@example.com"})
        assert client.put("/users/uid-2", json={"email": "ada@example.com"}).status_code == 409

    def test_settings_round_trip(self, client):
        assert client.get("/users/u-1/settings").status_code == 404
        client.put("/users/u-1/settings", json={"theme": "dark"})
        assert client.get("/users/u-1/settings").json()["theme"] == "dark"

        client.put("/users/u-1/settings", json={})
        settings = client.get("/users/u-1/settings").json()
        assert (settings["theme"], settings["auto_backup"]) == ("light", 0)


class TestMarketApi:

    def test_series(self, client):
        points = client.get("/market/aapl/daily").json()
        assert [p["date"] for p in points] == ["2024-05-30", "2024-05-31"]

    def test_unknown_granularity_is_rejected(self, client):
        assert client.get("/market/AAPL/weekly").status_code == 422

    def test_upstream_failure_is_bad_gateway(self, client):
        assert client.get("/market/FAIL/monthly").status_code == 502

    def test_projection_with_history(self, client):
        body = client.get("/projection/AAPL", params={"amount": 1000, "years": 2}).json()
        assert body["symbol"] == "AAPL"
        assert body["source"] in ("historical", "preset")
        assert body["future_value"] > 0
