"""Tests for the repository HTTP server and the HttpRepository client."""

import httpx
import pytest
from fastapi.testclient import TestClient

from common.exceptions import (
    ChunkSyncError,
    HashMismatchError,
    ImmutableConflictError,
    IncompleteStreamError,
    ManifestFormatError,
    NotFoundError,
    TransientError,
)
from common.hashing import compute_digest
from common.types import StreamMetadata
from repository.http_client import HttpRepository
from repository.server import create_app
from streams.manifest import encode_stream, new_stream, new_tree
from conftest import random_bytes


@pytest.fixture
def client(fs_repository):
    """Create FastAPI test client over a filesystem repository."""
    return TestClient(create_app(fs_repository))


@pytest.fixture
def http_repository(client):
    """HttpRepository talking to the in-process app."""
    return HttpRepository("http://testserver", client=client)


def mock_repository(handler, **kwargs) -> HttpRepository:
    session = httpx.Client(transport=httpx.MockTransport(handler), base_url='http://test')
    return HttpRepository('http://test', client=session, **kwargs)


class TestServer:
    """Raw HTTP behaviour of the repository server."""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json() == {'status': 'healthy', 'service': 'repository', 'algorithm': 'sha256'}

    def test_chunk_lifecycle(self, client):
        data = b"chunk bytes"
        key = compute_digest(data)

        assert client.head(f'/chunk/{key}').status_code == 404

        response = client.put(f'/chunk/{key}', content=data)
        assert response.status_code == 201
        assert response.json() == {'id': key, 'created': True}

        assert client.put(f'/chunk/{key}', content=data).status_code == 200
        assert client.head(f'/chunk/{key}').status_code == 200
        assert client.get(f'/chunk/{key}').content == data

    def test_put_chunk_hash_mismatch(self, client):
        key = compute_digest(b"claimed")
        response = client.put(f'/chunk/{key}', content=b"sent")

        assert response.status_code == 422
        body = response.json()
        assert body['code'] == 'HASH_MISMATCH'
        assert body['expected'] == key
        assert body['actual'] == compute_digest(b"sent")

    def test_missing_chunk(self, client):
        response = client.get(f'/chunk/{compute_digest(b"absent")}')

        assert response.status_code == 404
        assert response.json()['code'] == 'NOT_FOUND'

    def test_malformed_id_is_not_found(self, client):
        assert client.get('/chunk/not-a-digest').status_code == 404
        assert client.head('/stream/not-a-digest').status_code == 404

    def test_incomplete_stream(self, client, small_builder):
        stream = small_builder.build_from_bytes(random_bytes(2000))
        response = client.put(f'/stream/{stream.stream_id}', content=encode_stream(stream))

        assert response.status_code == 422
        body = response.json()
        assert body['code'] == 'INCOMPLETE_STREAM'
        assert body['manifest_id'] == stream.stream_id
        assert sorted(body['missing']) == sorted(stream.chunks)

    def test_manifest_under_wrong_id(self, client, small_builder):
        stream = small_builder.build_from_bytes(b"abc")
        response = client.put(f'/stream/{compute_digest(b"other")}', content=encode_stream(stream))

        assert response.status_code == 422
        assert response.json()['code'] == 'HASH_MISMATCH'

    def test_manifest_with_other_algorithm(self, client):
        stream = new_stream([], StreamMetadata(size=0), algorithm="blake3")
        response = client.put(f'/stream/{stream.stream_id}', content=encode_stream(stream))

        assert response.status_code == 400
        assert response.json()['code'] == 'MANIFEST_FORMAT'

    def test_undecodable_manifest(self, client):
        response = client.put(f'/stream/{compute_digest(b"x")}', content=b"{not json")

        assert response.status_code == 400
        assert response.json()['code'] == 'MANIFEST_FORMAT'

    def test_error_responses_documented(self, client):
        """Test routes advertise the {detail, code} error body in the API schema."""
        schema = client.get('/openapi.json').json()

        assert set(schema['components']['schemas']['ErrorResponse']['required']) == {'detail', 'code'}
        chunk_get = schema['paths']['/chunk/{chunk_hash}']['get']['responses']
        assert chunk_get['404']['content']['application/json']['schema']['$ref'].endswith('/ErrorResponse')

    def test_request_id_echoed(self, client):
        response = client.get('/health', headers={'X-Request-ID': 'req-123'})
        assert response.headers['X-Request-ID'] == 'req-123'

    def test_request_id_generated(self, client):
        assert client.get('/health').headers['X-Request-ID']


class TestHttpRepository:
    """HttpRepository against the real application."""

    def test_stream_publish_and_fetch(self, http_repository, small_builder):
        stream = small_builder.build_from_bytes(
            random_bytes(2500), on_chunk=lambda c: http_repository.put_chunk(c.hash, c.data)
        )

        assert http_repository.has_chunk(stream.chunks[0])
        assert http_repository.put_stream(stream) is True
        assert http_repository.put_stream(stream) is False
        assert http_repository.has_stream(stream.stream_id)
        assert http_repository.fetch_stream(stream.stream_id) == stream
        assert http_repository.fetch_chunk(stream.chunks[2]) == random_bytes(2500)[2048:]

    def test_tree_publish_and_fetch(self, http_repository, small_builder):
        stream = small_builder.build_from_bytes(
            b"tree file", on_chunk=lambda c: http_repository.put_chunk(c.hash, c.data)
        )
        http_repository.put_stream(stream)
        tree = new_tree(0o755, streams=[("file.txt", stream.stream_id)])

        assert not http_repository.has_tree(tree.tree_id)
        assert http_repository.put_tree(tree) is True
        assert http_repository.fetch_tree(tree.tree_id) == tree

    def test_not_found(self, http_repository):
        with pytest.raises(NotFoundError):
            http_repository.fetch_stream(compute_digest(b"none"))
        assert http_repository.has_stream(compute_digest(b"none")) is False

    def test_hash_mismatch(self, http_repository):
        with pytest.raises(HashMismatchError) as exc_info:
            http_repository.put_chunk(compute_digest(b"claimed"), b"sent")
        assert exc_info.value.actual == compute_digest(b"sent")

    def test_incomplete_stream(self, http_repository, small_builder):
        stream = small_builder.build_from_bytes(random_bytes(2000))

        with pytest.raises(IncompleteStreamError) as exc_info:
            http_repository.put_stream(stream)
        assert exc_info.value.manifest_id == stream.stream_id

    def test_health(self, http_repository):
        assert http_repository.health()['status'] == 'healthy'


class TestErrorMapping:
    """Error responses and network failures become domain exceptions."""

    def test_server_error_is_transient(self):
        repository = mock_repository(lambda request: httpx.Response(503, json={'detail': 'busy', 'code': 'TRANSIENT'}))

        with pytest.raises(TransientError):
            repository.has_chunk(compute_digest(b"x"))

    def test_rate_limit_is_transient(self):
        repository = mock_repository(lambda request: httpx.Response(429))

        with pytest.raises(TransientError):
            repository.fetch_chunk(compute_digest(b"x"))

    def test_connection_failure_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientError):
            mock_repository(handler).fetch_chunk(compute_digest(b"x"))

    def test_transport_retries_then_succeeds(self, monkeypatch):
        monkeypatch.setattr('repository.http_client.time.sleep', lambda delay: None)
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(502)
            return httpx.Response(200, content=b"late")

        repository = mock_repository(handler, max_retries=2)

        assert repository.fetch_chunk(compute_digest(b"late")) == b"late"
        assert len(attempts) == 3

    def test_conflict(self):
        repository = mock_repository(
            lambda request: httpx.Response(409, json={'detail': 'differs', 'code': 'IMMUTABLE_CONFLICT'})
        )
        tree = new_tree(0o755)

        with pytest.raises(ImmutableConflictError):
            repository.put_tree(tree)

    def test_manifest_format(self):
        repository = mock_repository(
            lambda request: httpx.Response(400, json={'detail': 'bad', 'code': 'MANIFEST_FORMAT'})
        )
        with pytest.raises(ManifestFormatError):
            repository.put_tree(new_tree(0o755))

    def test_unknown_error(self):
        repository = mock_repository(lambda request: httpx.Response(418, text="teapot"))

        with pytest.raises(ChunkSyncError):
            repository.put_chunk(compute_digest(b"x"), b"x")

    def test_request_id_sent(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get('X-Request-ID'))
            return httpx.Response(200)

        mock_repository(handler).has_chunk(compute_digest(b"x"))
        assert seen and seen[0]
