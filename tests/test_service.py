import io

import httpx
import pytest

from conftest import image_size, make_image
from core.errors import NotFoundError, QuotaExceededError, ValidationError
from core.settings import MediaSettings
from media.ingest import RemoteIngestor
from media.cache import TransformedArtifact
from media.service import MediaService, OriginalMedia
from media.transform_spec import TransformSpec


def _service(storage, max_upload_size=1024 * 1024, handler=None):
    settings = MediaSettings(max_upload_size=max_upload_size, presign_ttl_seconds=300)
    ingestor = None
    if handler is not None:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        ingestor = RemoteIngestor(storage, max_bytes=max_upload_size, http_client=client)
    return MediaService(storage, settings, ingestor=ingestor)


def test_upload_original_stores_under_generated_name(storage, jpeg_400x300):
    svc = _service(storage)

    result = svc.upload_original(io.BytesIO(jpeg_400x300), "../holiday photo.jpg")

    assert result.object_ref.startswith("uploads/")
    assert result.object_ref.endswith("/holiday_photo.jpg")
    assert result.size == len(jpeg_400x300)
    assert result.content_type == "image/jpeg"
    assert result.file_type == "image"
    assert storage.objects[result.object_ref] == jpeg_400x300
    assert (result.width, result.height, result.orientation) == (400, 300, "landscape")


def test_same_filename_never_collides(storage, jpeg_400x300):
    svc = _service(storage)
    a = svc.upload_original(io.BytesIO(jpeg_400x300), "a.jpg")
    b = svc.upload_original(io.BytesIO(jpeg_400x300), "a.jpg")
    assert a.object_ref != b.object_ref


def test_upload_over_limit_leaves_nothing(storage):
    svc = _service(storage, max_upload_size=100)

    with pytest.raises(QuotaExceededError):
        svc.upload_original(io.BytesIO(b"x" * 101), "big.bin")
    assert storage.objects == {}


def test_empty_upload_rejected(storage):
    with pytest.raises(ValidationError):
        _service(storage).upload_original(io.BytesIO(b""), "empty.jpg")


def test_fetch_transformed_validates_before_io(storage):
    svc = _service(storage)
    with pytest.raises(ValidationError):
        svc.fetch_transformed("anything.jpg", {"width": "-1"})
    with pytest.raises(ValidationError):
        svc.fetch_transformed("anything.jpg", TransformSpec(quality=150))
    assert storage.calls == []


def test_fetch_transformed_miss_then_hit(storage, jpeg_400x300):
    svc = _service(storage)
    ref = svc.upload_original(io.BytesIO(jpeg_400x300), "cat.jpg").object_ref

    first = svc.fetch_transformed(ref, {"preset": "thumbnail"})
    second = svc.fetch_transformed(ref, {"width": "150", "height": "150", "fit": "cover", "quality": "80"})

    assert (first.cache_hit, second.cache_hit) == (False, True)
    assert first.data == second.data
    assert image_size(first.data) == (150, 150)


def test_fetch_transformed_missing_source(storage):
    with pytest.raises(NotFoundError):
        _service(storage).fetch_transformed("nope.jpg", {"width": "10"})


def test_delete_object(storage):
    svc = _service(storage)
    storage.upload_bytes(b"abc", "x.bin")
    svc.delete_object("x.bin")
    svc.delete_object("x.bin")
    assert storage.objects == {}


def test_presigned_url_uses_default_ttl(storage):
    p = _service(storage).presigned_url("x.bin")
    assert "ttl=300" in p.url


def test_bulk_import_delegates_with_limit(storage):
    def handler(request):
        return httpx.Response(200, content=b"a" * 50)

    report = _service(storage, handler=handler).bulk_import_from_urls(
        ["https://origin.test/1.bin", "https://origin.test/2.bin"], max_bytes=40
    )
    assert report.total == 2
    assert report.success_count == 0


def test_portrait_upload_metadata(storage):
    result = _service(storage).upload_original(io.BytesIO(make_image(30, 80, "PNG")), "tall.png")
    assert (result.width, result.height, result.orientation) == (30, 80, "portrait")


def test_serve_media_streams_non_image_even_with_options(storage):
    pdf = b"%PDF-1.4\n" + b"0" * 200_000
    storage.upload_bytes(pdf, "docs/report.pdf")

    result = _service(storage).serve_media("docs/report.pdf", {"width": "100"}, require_directive=False)

    assert isinstance(result, OriginalMedia)
    assert result.content_type == "application/pdf"
    assert result.filename == "report.pdf"
    try:
        assert result.stream.read() == pdf
    finally:
        result.stream.close()
    assert storage.count("upload") == 1


def test_serve_media_without_directive_streams_original(storage, jpeg_400x300):
    storage.upload_bytes(jpeg_400x300, "cat.jpg")

    result = _service(storage).serve_media("cat.jpg", {"fit": "cover"})

    assert isinstance(result, OriginalMedia)
    assert result.content_type == "image/jpeg"
    assert result.stream.read() == jpeg_400x300
    result.stream.close()


def test_serve_media_transforms_images_with_directive(storage, jpeg_400x300):
    storage.upload_bytes(jpeg_400x300, "cat.jpg")

    result = _service(storage).serve_media("cat.jpg", {"width": "100"})

    assert isinstance(result, TransformedArtifact)
    assert image_size(result.data) == (100, 75)


def test_serve_media_sniffs_refs_without_extension(storage, jpeg_400x300):
    storage.upload_bytes(jpeg_400x300, "blobs/cat")
    storage.upload_bytes(b"just some text", "blobs/notes")
    svc = _service(storage)

    image = svc.serve_media("blobs/cat", {"width": "40"})
    text = svc.serve_media("blobs/notes", {"width": "40"})

    assert isinstance(image, TransformedArtifact)
    assert image_size(image.data) == (40, 30)
    assert isinstance(text, OriginalMedia)
    assert text.stream.read() == b"just some text"
    text.stream.close()


def test_serve_media_validates_before_io(storage):
    with pytest.raises(ValidationError):
        _service(storage).serve_media("docs/report.pdf", {"quality": "500"})
    assert storage.calls == []


def test_closing_original_closes_backend_stream(storage):
    storage.upload_bytes(b"%PDF-1.4 tiny", "doc.pdf")
    opened = []
    download = storage.download

    def tracking_download(ref):
        stream = download(ref)
        opened.append(stream)
        return stream

    storage.download = tracking_download
    original = _service(storage).open_original("doc.pdf")
    original.stream.close()

    assert opened[0].closed
