"""End-to-end tests for the storefront API."""

import io
import json

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from storefront.app.services.file_validation import CORRUPT_FILE_MESSAGE


def png_bytes(size=(32, 16)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (0, 128, 255)).save(buf, format="PNG")
    return buf.getvalue()


def fetch_token(client: TestClient) -> str:
    response = client.get("/api/csrf-token")
    assert response.status_code == 200
    return response.json()["csrf_token"]


def contact_payload(token: str, **overrides) -> dict:
    payload = {
        "csrf_token": token,
        "name": "Ada Lovelace",
        "email": "Ada@Example.com",
        "body": "Where is my order?",
    }
    payload.update(overrides)
    return payload


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["components"]["rate_limit_store"] == "InMemoryRateLimitStore"

    def test_request_id_header(self, client):
        assert "X-Request-ID" in client.get("/health").headers


class TestCsrfToken:

    def test_issues_signed_token(self, client):
        token = fetch_token(client)

        value, signature = token.split(".")
        assert len(value) == 64
        assert len(signature) == 64

    def test_session_cookie_set(self, client):
        response = client.get("/api/csrf-token")
        assert "wornvault_session" in response.cookies


class TestContact:

    def test_structured_data(self, client):
        response = client.get("/api/contact/structured-data")

        assert response.status_code == 200
        data = json.loads(response.json()["json_ld"])
        assert data["@type"] == "ContactPage"
        assert data["mainEntityOfPage"]["@id"] == "https://wornvault.com/contact"

    def test_valid_submission(self, client):
        token = fetch_token(client)

        response = client.post("/api/contact", data=contact_payload(token))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["submission"] == {
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "body": "Where is my order?",
        }
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_token_in_header_with_json_body(self, client):
        token = fetch_token(client)
        payload = contact_payload(token)
        del payload["csrf_token"]

        response = client.post("/api/contact", json=payload, headers={"X-CSRF-Token": token})
        assert response.status_code == 200

    def test_missing_token(self, client):
        fetch_token(client)

        response = client.post("/api/contact", data=contact_payload(""))

        assert response.status_code == 403
        assert response.json() == {
            "error": "csrf_failed",
            "message": "Invalid security token. Please refresh the page and try again.",
        }

    def test_token_is_single_use(self, client):
        token = fetch_token(client)

        assert client.post("/api/contact", data=contact_payload(token)).status_code == 200
        assert client.post("/api/contact", data=contact_payload(token)).status_code == 403

    def test_token_rejected_with_replayed_session_cookie(self, client):
        token = fetch_token(client)
        saved_cookie = client.cookies.get("wornvault_session")

        assert client.post("/api/contact", data=contact_payload(token)).status_code == 200

        client.cookies.clear()
        response = client.post(
            "/api/contact",
            data=contact_payload(token),
            headers={"Cookie": f"wornvault_session={saved_cookie}"},
        )
        assert response.status_code == 403

    def test_token_without_session(self, session_secret):
        from storefront.app.main import create_app
        from storefront.app.services.csrf import generate_csrf_token

        with TestClient(create_app()) as fresh_client:
            token = generate_csrf_token(session_secret)
            response = fresh_client.post("/api/contact", data=contact_payload(token))

        assert response.status_code == 403

    def test_field_errors(self, client):
        token = fetch_token(client)

        response = client.post(
            "/api/contact", data=contact_payload(token, email="not-an-email", body="")
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "validation_failed"
        assert body["field_errors"] == {
            "email": "Please enter a valid email address",
            "body": "Message is required",
        }

    def test_html_stripped_from_name(self, client):
        token = fetch_token(client)

        response = client.post(
            "/api/contact", data=contact_payload(token, name="<b>Ada</b>")
        )
        assert response.json()["submission"]["name"] == "Ada"

    def test_rate_limited_after_five_attempts(self, client):
        for _ in range(5):
            response = client.post("/api/contact", data=contact_payload("x"))
            assert response.status_code == 403

        response = client.post("/api/contact", data=contact_payload("x"))

        assert response.status_code == 429
        body = response.json()
        assert body["error"] == "rate_limit_exceeded"
        assert body["retry_after"] == 900
        assert response.headers["Retry-After"] == "900"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_rate_limit_per_client_ip(self, client):
        for _ in range(6):
            client.post(
                "/api/contact",
                data=contact_payload("x"),
                headers={"X-Forwarded-For": "198.51.100.1"},
            )

        response = client.post(
            "/api/contact",
            data=contact_payload("x"),
            headers={"X-Forwarded-For": "198.51.100.2"},
        )
        assert response.status_code == 403


class TestImageUpload:

    def test_valid_upload(self, client):
        token = fetch_token(client)

        response = client.post(
            "/api/uploads/images",
            data={"csrf_token": token},
            files={"file": ("photo.png", png_bytes(), "image/png")},
        )

        assert response.status_code == 200
        assert response.json() == {
            "mime_type": "image/png",
            "extension": "png",
            "width": 32,
            "height": 16,
        }

    def test_token_in_header(self, client):
        token = fetch_token(client)

        response = client.post(
            "/api/uploads/images",
            headers={"X-CSRF-Token": token},
            files={"file": ("photo.png", png_bytes(), "image/png")},
        )
        assert response.status_code == 200

    def test_spoofed_content(self, client):
        token = fetch_token(client)

        response = client.post(
            "/api/uploads/images",
            data={"csrf_token": token},
            files={"file": ("evil.png", b"<html><script>alert(1)</script></html>", "image/png")},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "upload_rejected", "message": CORRUPT_FILE_MESSAGE}

    def test_missing_file(self, client):
        token = fetch_token(client)

        response = client.post("/api/uploads/images", data={"csrf_token": token})

        assert response.status_code == 400
        assert response.json()["message"] == "No file provided"

    def test_declared_size_rejected_before_parsing(self, client, monkeypatch):
        from storefront.app.core.config import settings

        monkeypatch.setattr(settings, "upload_max_file_size", 1024)
        token = fetch_token(client)

        response = client.post(
            "/api/uploads/images",
            data={"csrf_token": token},
            files={"file": ("big.png", b"\x00" * (128 * 1024), "image/png")},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "upload_rejected"

        # The form was never parsed, so the token is still unused
        response = client.post(
            "/api/uploads/images",
            data={"csrf_token": token},
            files={"file": ("photo.png", png_bytes(), "image/png")},
        )
        assert response.status_code == 200

    def test_requires_csrf(self, client):
        response = client.post(
            "/api/uploads/images",
            files={"file": ("photo.png", png_bytes(), "image/png")},
        )
        assert response.status_code == 403


class TestErrorHandling:

    @pytest.mark.parametrize(("debug", "message"), [(False, "Internal server error"), (True, "boom")])
    def test_unhandled_exception(self, session_secret, monkeypatch, debug, message):
        from storefront.app.core.config import settings
        from storefront.app.main import create_app

        monkeypatch.setattr(settings, "debug", debug)
        app = create_app()

        @app.get("/boom")
        async def boom():
            raise RuntimeError("boom")

        response = TestClient(app, raise_server_exceptions=False).get("/boom")

        assert response.status_code == 500
        assert response.json()["error"] == "internal_error"
        assert response.json()["message"] == message
        assert "Traceback" not in response.text
