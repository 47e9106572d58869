import pytest
from fastapi.testclient import TestClient

from conftest import image_size
from core.errors import BackendUnavailableError
from core.settings import MediaSettings, get_settings
from main import create_app
from media.service import MediaService
from providers.factory import Providers


@pytest.fixture
def client(storage, monkeypatch):
    monkeypatch.delenv("STORAGE_MODE", raising=False)
    monkeypatch.delenv("STORAGE_PROVIDER", raising=False)
    get_settings.cache_clear()
    providers = Providers(
        settings=get_settings(),
        storage=storage,
        media=MediaService(storage, MediaSettings(max_upload_size=1024 * 1024)),
    )
    with TestClient(create_app(providers)) as c:
        yield c
    get_settings.cache_clear()


def _upload(client, data, name="cat.jpg"):
    resp = client.post("/media", files={"file": (name, data, "image/jpeg")})
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client):
    assert client.get("/health").json() == {"ok": True}
    body = client.get("/health/storage").json()
    assert body["ok"] is True
    assert body["backend"] == "InMemoryStorage"


def test_health_storage_reports_unreachable(client, storage, monkeypatch):
    def down():
        raise BackendUnavailableError("no route to host")

    monkeypatch.setattr(storage, "ping", down)
    resp = client.get("/health/storage")
    assert resp.status_code == 503
    assert resp.json()["storageReachable"] is False


def test_upload_then_transform_miss_then_hit(client, jpeg_400x300):
    ref = _upload(client, jpeg_400x300)["object_ref"]

    first = client.get(f"/media/transform/{ref}", params={"preset": "thumbnail"})
    second = client.get(f"/media/transform/{ref}", params={"preset": "thumbnail"})

    assert first.status_code == 200
    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert first.headers["Cache-Control"] == "public, max-age=31536000"
    assert first.headers["content-type"] == "image/jpeg"
    assert first.content == second.content
    assert image_size(first.content) == (150, 150)


def test_fresh_request_is_not_stored_by_clients(client, jpeg_400x300):
    ref = _upload(client, jpeg_400x300)["object_ref"]
    resp = client.get(f"/media/transform/{ref}", params={"width": "100", "fresh": "true"})
    assert resp.headers["X-Cache"] == "MISS"
    assert resp.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"


def test_invalid_spec_lists_violations(client):
    resp = client.get("/media/transform/x.jpg", params={"width": "-1", "quality": "150", "fit": "diagonal"})
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "validation_error"
    assert len(body["violations"]) == 3


def test_upload_reports_image_dimensions(client, jpeg_400x300):
    body = _upload(client, jpeg_400x300)
    assert (body["width"], body["height"], body["orientation"]) == (400, 300, "landscape")

    other = client.post("/media", files={"file": ("notes.txt", b"hello", "text/plain")}).json()
    assert (other["width"], other["height"], other["orientation"]) == (None, None, None)


def test_missing_source_is_404(client):
    resp = client.get("/media/transform/uploads/none.jpg", params={"width": "10"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_undecodable_source_is_422(client):
    ref = _upload(client, b"plain text, not pixels", name="notes.jpg")["object_ref"]
    resp = client.get(f"/media/transform/{ref}", params={"width": "10"})
    assert resp.status_code == 422


def test_upload_too_large_is_413(client, storage):
    resp = client.post("/media", files={"file": ("big.bin", b"x" * (1024 * 1024 + 1), "application/octet-stream")})
    assert resp.status_code == 413
    assert storage.objects == {}


def test_presign_and_delete(client, storage, jpeg_400x300):
    ref = _upload(client, jpeg_400x300)["object_ref"]

    presigned = client.get(f"/media/presign/{ref}", params={"ttl": "60"}).json()
    assert "ttl=60" in presigned["url"]
    assert presigned["expires_at"]

    resp = client.delete(f"/media/objects/{ref}")
    assert resp.status_code == 204
    assert ref not in storage.objects
    assert client.delete(f"/media/objects/{ref}").status_code == 204


def test_import_endpoint_shape(client, monkeypatch):
    from media.ingest import BulkImportReport, ImportResult

    def fake_import(items, max_bytes=None):
        return BulkImportReport(
            total=2,
            success_count=1,
            results=[
                ImportResult(
                    url=items[0].url,
                    success=True,
                    object_ref="uploads/1/a.png",
                    size=3,
                    width=4,
                    height=2,
                    orientation="landscape",
                ),
                ImportResult(url=items[1].url, success=False, error="Failed to download: status code 404"),
            ],
        )

    monkeypatch.setattr(client.app.state.providers.media, "bulk_import_from_urls", fake_import)
    resp = client.post(
        "/media/import",
        json={"urls": [{"url": "https://origin.test/a.png"}, {"url": "https://origin.test/b.png"}]},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 2
    assert body["success_count"] == 1
    assert body["results"][0]["object_ref"] == "uploads/1/a.png"
    assert body["results"][0]["orientation"] == "landscape"
    assert body["results"][1]["width"] is None
    assert body["results"][1]["error"].endswith("404")


def test_import_requires_urls(client):
    assert client.post("/media/import", json={"urls": []}).status_code == 422


def test_transform_of_non_image_streams_original(client, storage):
    pdf = b"%PDF-1.4\n" + b"%" * 5000
    ref = _upload(client, pdf, name="manual.pdf")["object_ref"]

    resp = client.get(f"/media/transform/{ref}", params={"width": "100"})

    assert resp.status_code == 200
    assert resp.content == pdf
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.headers["content-disposition"] == 'inline; filename="manual.pdf"'
    assert "X-Cache" not in resp.headers
    assert not any(key.startswith("transforms/") for key in storage.objects)


def test_files_streams_original_without_options(client, jpeg_400x300):
    ref = _upload(client, jpeg_400x300)["object_ref"]

    resp = client.get(f"/media/files/{ref}")

    assert resp.status_code == 200
    assert resp.content == jpeg_400x300
    assert resp.headers["content-type"] == "image/jpeg"


def test_files_transforms_image_with_options(client, jpeg_400x300):
    ref = _upload(client, jpeg_400x300)["object_ref"]

    resp = client.get(f"/media/files/{ref}", params={"width": "200"})

    assert resp.status_code == 200
    assert resp.headers["X-Cache"] == "MISS"
    assert image_size(resp.content) == (200, 150)


def test_files_missing_is_404(client):
    resp = client.get("/media/files/uploads/none.pdf")
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"
