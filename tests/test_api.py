import io

import pytest
from PIL import Image

from verisure import qr
from verisure.directory import ProductDirectory
from verisure.routes import verify as verify_routes
from verisure.verification import VerificationService

from conftest import oversized_png

API = "/api/v1"


def _blank_png():
    buffer = io.BytesIO()
    Image.new("RGB", (120, 120), "white").save(buffer, format="PNG")
    return buffer.getvalue()


async def _register(client, headers, product_id="P1", name="Shoe"):
    response = await client.post(f"{API}/products", json={"product_id": product_id, "name": name}, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


# ── registration ────────────────────────────────────────────────────────────────

async def test_register_product(client, manufacturer_headers):
    body = await _register(client, manufacturer_headers)

    assert body["product"]["product_id"] == "P1"
    assert body["product"]["name"] == "Shoe"
    assert body["product"]["is_fake"] is False
    assert body["product"]["qr_hash"].startswith("product_P1_")
    assert body["ledger_status"] == "unavailable"
    assert body["qr_code"].startswith("data:image/png;base64,")
    assert body["qr_filename"] == body["product"]["qr_hash"] + ".png"


async def test_register_requires_authentication(client):
    response = await client.post(f"{API}/products", json={"product_id": "P1", "name": "Shoe"})
    assert response.status_code == 401


async def test_register_rejects_customers(client, customer_headers):
    response = await client.post(f"{API}/products", json={"product_id": "P1", "name": "Shoe"}, headers=customer_headers)
    assert response.status_code == 403


async def test_register_rejects_bad_token(client):
    headers = {"Authorization": "Bearer not-a-jwt"}
    response = await client.post(f"{API}/products", json={"product_id": "P1", "name": "Shoe"}, headers=headers)
    assert response.status_code == 401


async def test_register_validates_blank_fields(client, manufacturer_headers):
    response = await client.post(f"{API}/products", json={"product_id": "   ", "name": "Shoe"}, headers=manufacturer_headers)
    assert response.status_code == 422


async def test_register_rejects_reserved_identifier(client, manufacturer_headers):
    response = await client.post(f"{API}/products", json={"product_id": "by-qr", "name": "Shoe"}, headers=manufacturer_headers)
    assert response.status_code == 422


async def test_register_duplicate_conflict(client, manufacturer_headers):
    await _register(client, manufacturer_headers)
    response = await client.post(f"{API}/products", json={"product_id": "P1", "name": "Shoe"}, headers=manufacturer_headers)
    assert response.status_code == 409
    assert "P1" in response.json()["detail"]


async def test_directory_failure_is_500(client, manufacturer_headers, ledger_spy, broken_session_maker):
    from verisure.main import app

    app.state.verification = VerificationService(ledger=ledger_spy, directory=ProductDirectory(broken_session_maker))
    response = await client.post(f"{API}/products", json={"product_id": "P1", "name": "Shoe"}, headers=manufacturer_headers)

    assert response.status_code == 500
    assert response.json() == {"detail": "Product directory unavailable"}


async def test_list_products(client, manufacturer_headers):
    await _register(client, manufacturer_headers, "P1", "Shoe")
    await _register(client, manufacturer_headers, "P2", "Bag")

    response = await client.get(f"{API}/products", headers=manufacturer_headers)

    assert response.status_code == 200
    assert [p["product_id"] for p in response.json()] == ["P2", "P1"]


async def test_download_qr(client, manufacturer_headers):
    body = await _register(client, manufacturer_headers)

    response = await client.get(f"{API}/products/P1/qr", headers=manufacturer_headers)

    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert body["qr_filename"] in response.headers["content-disposition"]
    assert qr.decode_from_image(response.content) == body["product"]["qr_hash"]


async def test_download_qr_unknown(client, manufacturer_headers):
    response = await client.get(f"{API}/products/P404/qr", headers=manufacturer_headers)
    assert response.status_code == 404


# ── flagging ────────────────────────────────────────────────────────────────────

async def test_flag_product(client, manufacturer_headers, admin_headers):
    await _register(client, manufacturer_headers)

    first = await client.post(f"{API}/products/P1/flag", headers=admin_headers)
    second = await client.post(f"{API}/products/P1/flag", headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["product"]["is_fake"] is True
    assert second.status_code == 200
    assert second.json()["product"]["is_fake"] is True

    verified = await client.get(f"{API}/verify/P1")
    assert verified.json()["is_fake"] is True


async def test_flag_requires_admin(client, manufacturer_headers):
    await _register(client, manufacturer_headers)
    response = await client.post(f"{API}/products/P1/flag", headers=manufacturer_headers)
    assert response.status_code == 403


async def test_flag_unknown(client, admin_headers):
    response = await client.post(f"{API}/products/P404/flag", headers=admin_headers)
    assert response.status_code == 404


# ── public verification ─────────────────────────────────────────────────────────

async def test_verify_by_id(client, manufacturer_headers):
    await _register(client, manufacturer_headers)

    response = await client.get(f"{API}/verify/P1")

    assert response.status_code == 200
    assert response.json() == {"name": "Shoe", "is_fake": False, "source": "directory", "product_id": "P1"}


@pytest.mark.parametrize("product_id", ["qr", "qr-image"])
async def test_verify_by_id_route_words_as_identifiers(client, manufacturer_headers, product_id):
    await _register(client, manufacturer_headers, product_id, "Shoe")

    response = await client.get(f"{API}/verify/{product_id}")

    assert response.status_code == 200
    assert response.json()["product_id"] == product_id


async def test_verify_by_id_not_found(client):
    response = await client.get(f"{API}/verify/P404")
    assert response.status_code == 404


async def test_verify_by_qr_token(client, manufacturer_headers):
    body = await _register(client, manufacturer_headers)

    response = await client.get(f"{API}/verify/by-qr", params={"token": body["qr_filename"]})

    assert response.status_code == 200
    assert response.json()["name"] == "Shoe"


async def test_verify_by_qr_token_not_found(client):
    response = await client.get(f"{API}/verify/by-qr", params={"token": "product_P9_1_zzzz"})
    assert response.status_code == 404


async def test_verify_by_qr_image(client, manufacturer_headers):
    body = await _register(client, manufacturer_headers)
    png = qr.encode_png(body["product"]["qr_hash"])

    response = await client.post(
        f"{API}/verify/qr-image",
        files={"file": ("camera.jpg", png, "image/png")},
    )

    assert response.status_code == 200
    result = response.json()
    assert result["token_source"] == "image"
    assert result["token"] == body["product"]["qr_hash"]
    assert result["result"]["name"] == "Shoe"


async def test_verify_by_qr_image_filename_fallback(client, manufacturer_headers):
    body = await _register(client, manufacturer_headers)
    filename = f"{body['product']['qr_hash']} (2).png"

    response = await client.post(
        f"{API}/verify/qr-image",
        files={"file": (filename, _blank_png(), "image/png")},
    )

    assert response.status_code == 200
    result = response.json()
    assert result["token_source"] == "filename"
    assert result["result"]["product_id"] == "P1"


async def test_verify_by_qr_image_oversized_pixels_uses_filename(client, manufacturer_headers):
    body = await _register(client, manufacturer_headers)

    response = await client.post(
        f"{API}/verify/qr-image",
        files={"file": (body["qr_filename"], oversized_png(), "image/png")},
    )

    assert response.status_code == 200
    result = response.json()
    assert result["token_source"] == "filename"
    assert result["result"]["product_id"] == "P1"


async def test_verify_by_qr_image_too_large(client, monkeypatch):
    monkeypatch.setattr(verify_routes, "MAX_UPLOAD_BYTES", 1024)

    response = await client.post(
        f"{API}/verify/qr-image",
        files={"file": ("big.png", b"\x00" * 1025, "image/png")},
    )

    assert response.status_code == 413


async def test_verify_by_qr_image_no_match(client):
    response = await client.post(
        f"{API}/verify/qr-image",
        files={"file": ("holiday.png", _blank_png(), "image/png")},
    )

    assert response.status_code == 200
    assert response.json() == {"token": "holiday", "token_source": "filename", "result": None}


# ── analytics & health ──────────────────────────────────────────────────────────

async def test_analytics(client, manufacturer_headers, admin_headers):
    await _register(client, manufacturer_headers, "P1", "Shoe")
    await _register(client, manufacturer_headers, "P2", "Bag")
    await client.post(f"{API}/products/P2/flag", headers=admin_headers)

    response = await client.get(f"{API}/analytics", headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert (body["real_count"], body["fake_count"], body["total_count"]) == (1, 1, 2)
    assert sum(day["count"] for day in body["daily"]) == 2


async def test_analytics_requires_admin(client, manufacturer_headers):
    response = await client.get(f"{API}/analytics", headers=manufacturer_headers)
    assert response.status_code == 403


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["checks"] == {"database": "ok", "ledger": "not_configured"}
