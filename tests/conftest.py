import io
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from PIL import Image

# Ensure repo root is importable (flat layout, no installed package required)
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from core.errors import BackendUnavailableError, NotFoundError  # noqa: E402
from providers.storage import PresignedURL  # noqa: E402
from providers.streams import clean_ref  # noqa: E402


class InMemoryStorage:
    """
    Dict-backed StorageProvider. Records calls so tests can assert on the
    exact sequence of backend operations.
    """

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.fail_uploads = False
        self.fail_downloads_for = set()
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def upload(self, stream, logical_name):
        ref = clean_ref(logical_name)
        data = stream.read()
        return self._store(ref, data)

    def upload_bytes(self, data, logical_name):
        return self._store(clean_ref(logical_name), bytes(data))

    def _store(self, ref, data):
        self._record("upload", ref)
        if self.fail_uploads:
            raise BackendUnavailableError(f"upload {ref} failed: injected")
        with self._lock:
            self.objects[ref] = data
        return ref

    def download(self, ref):
        ref = clean_ref(ref)
        self._record("download", ref)
        if ref in self.fail_downloads_for:
            raise BackendUnavailableError(f"download {ref} failed: injected")
        with self._lock:
            if ref not in self.objects:
                raise NotFoundError(ref)
            return io.BytesIO(self.objects[ref])

    def delete(self, ref):
        ref = clean_ref(ref)
        self._record("delete", ref)
        with self._lock:
            self.objects.pop(ref, None)

    def get_internal_url(self, ref):
        return f"http://storage.internal/{clean_ref(ref)}"

    def get_public_url(self, ref):
        return f"https://cdn.example.com/{clean_ref(ref)}"

    def get_presigned_url(self, ref, ttl_seconds=900):
        expires = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
        return PresignedURL(url=f"https://cdn.example.com/{clean_ref(ref)}?sig=x&ttl={ttl_seconds}", expires_at=expires)

    def ping(self):
        return None

    def count(self, op, ref=None):
        return sum(1 for c in self.calls if c[0] == op and (ref is None or c[1] == ref))


def make_image(width=400, height=300, fmt="JPEG", color=(200, 40, 40), mode="RGB"):
    img = Image.new(mode, (width, height), color)
    buf = io.BytesIO()
    img.save(buf, fmt)
    return buf.getvalue()


def image_size(data):
    with Image.open(io.BytesIO(data)) as img:
        return img.size


def image_format(data):
    with Image.open(io.BytesIO(data)) as img:
        return img.format


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def jpeg_400x300():
    return make_image(400, 300, "JPEG")

