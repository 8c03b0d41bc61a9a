import io
import uuid

from django.core.cache.backends.locmem import LocMemCache
from PIL import Image

from client.http import ApiClient, TransportResponse
from client.images import SelectedImage
from client.mock import MOCK_PASSWORD, MockBackend
from client.services import AuthService
from client.session import LocalStore, Session


def make_store():
    return LocalStore(LocMemCache(f'pestcheck-test-{uuid.uuid4().hex}', {}))


def image_bytes(size=(200, 200), image_format='JPEG', color='green'):
    buffer = io.BytesIO()
    Image.new('RGB', size, color).save(buffer, format=image_format)
    return buffer.getvalue()


def make_image(name='leaf.jpg', size=(200, 200)):
    return SelectedImage.open(image_bytes(size), name=name)


def mock_client(username='farmer', backend=None):
    """An ``ApiClient`` logged in to a fresh ``MockBackend``."""
    backend = backend or MockBackend()
    client = ApiClient(backend, Session(make_store()))
    if username:
        AuthService(client).login(username, MOCK_PASSWORD)
    return client, backend


class FakeTransport:
    """Replays canned responses in order and records every request."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, path, params=None, json=None, data=None, files=None, headers=None):
        self.calls.append({
            'method': method,
            'path': path,
            'params': params,
            'json': json,
            'data': data,
            'files': files,
            'headers': headers or {},
        })
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def respond(status_code, data=None):
    return TransportResponse(status_code, data)


def fake_client(*responses, session=None):
    transport = FakeTransport(*responses)
    return ApiClient(transport, session or Session(make_store())), transport
