"""HTTP client for a remote chunksync repository server."""

import time
import uuid
from typing import Optional

import httpx

from common.exceptions import (
    ChunkSyncError,
    HashMismatchError,
    ImmutableConflictError,
    IncompleteStreamError,
    ManifestFormatError,
    NotFoundError,
    TransientError,
)
from common.logging_config import get_logger
from common.types import Stream, Tree
from streams.manifest import decode_stream, decode_tree, encode_stream, encode_tree

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 30.0


class HttpRepository:
    """
    Repository client speaking the chunk/stream/tree HTTP protocol.

    Connection failures, timeouts, 429 and 5xx responses become
    TransientError; other error responses are mapped back to the domain
    exception named by their "code".
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 0,
        retry_backoff: float = 2.0,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize repository client.

        Args:
            base_url: Server root, e.g. http://localhost:8700
            timeout: Per-request timeout in seconds
            max_retries: Transport-level retries before raising TransientError
                (the sync engine retries on top of this)
            retry_backoff: Backoff multiplier between transport retries
            client: Pre-built httpx.Client (tests inject one with a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.session = client or httpx.Client(base_url=self.base_url, timeout=timeout)
        logger.info(f"Initialized HttpRepository [base_url={self.base_url}]")

    def __repr__(self) -> str:
        return f"HttpRepository({self.base_url!r})"

    def _request(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """
        Make an HTTP request, retrying network failures and 5xx responses.

        Returns:
            Response with status below 500 (and not 429)

        Raises:
            TransientError: If retries are exhausted
        """
        request_id = str(uuid.uuid4())
        kwargs.setdefault('headers', {})['X-Request-ID'] = request_id

        logger.debug(f"Making request: {method} {endpoint} [request_id={request_id}]")

        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.request(method, endpoint, **kwargs)
            except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt < self.max_retries:
                    delay = self.retry_backoff ** attempt
                    logger.warning(
                        f"Network error (attempt {attempt + 1}/{self.max_retries + 1}): "
                        f"{method} {endpoint} error={type(e).__name__}, retrying in {delay}s [request_id={request_id}]"
                    )
                    time.sleep(delay)
                    continue
                logger.error(f"Network error: {method} {endpoint} error={e} [request_id={request_id}]")
                raise TransientError(f"Cannot reach repository at {self.base_url}: {e}") from e

            logger.debug(
                f"Response received: {method} {endpoint} status={response.status_code} [request_id={request_id}]"
            )
            if response.status_code >= 500 or response.status_code == 429:
                if attempt < self.max_retries:
                    delay = self.retry_backoff ** attempt
                    logger.warning(
                        f"Server error (attempt {attempt + 1}/{self.max_retries + 1}): "
                        f"{method} {endpoint} status={response.status_code}, retrying in {delay}s [request_id={request_id}]"
                    )
                    time.sleep(delay)
                    continue
                raise TransientError(
                    f"Repository returned {response.status_code} for {method} {endpoint}: {self._detail(response)}"
                )
            return response

        raise TransientError("Max retries exceeded")

    @staticmethod
    def _detail(response: httpx.Response) -> str:
        try:
            return response.json().get('detail', response.text)
        except ValueError:
            return response.text

    def _raise_for_error(self, response: httpx.Response) -> None:
        """Translate an error response into the matching domain exception."""
        if response.status_code < 400:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        code = body.get('code')
        detail = body.get('detail') or response.text

        if response.status_code == 404 or code == 'NOT_FOUND':
            raise NotFoundError(detail)
        if response.status_code == 409 or code == 'IMMUTABLE_CONFLICT':
            raise ImmutableConflictError(detail)
        if code == 'HASH_MISMATCH':
            raise HashMismatchError(body.get('expected', ''), body.get('actual', ''), detail)
        if code == 'INCOMPLETE_STREAM':
            raise IncompleteStreamError(body.get('manifest_id', ''), body.get('missing', []))
        if code == 'MANIFEST_FORMAT':
            raise ManifestFormatError(detail)
        raise ChunkSyncError(f"Repository error {response.status_code}: {detail}")

    def _exists(self, endpoint: str) -> bool:
        response = self._request('HEAD', endpoint)
        if response.status_code == 404:
            return False
        self._raise_for_error(response)
        return True

    def _put(self, endpoint: str, content: bytes, content_type: str) -> bool:
        response = self._request('PUT', endpoint, content=content, headers={'Content-Type': content_type})
        self._raise_for_error(response)
        return response.status_code == 201

    def has_chunk(self, chunk_hash: str) -> bool:
        return self._exists(f"/chunk/{chunk_hash}")

    def fetch_chunk(self, chunk_hash: str) -> bytes:
        """
        Download a chunk. Digest verification is left to the caller.

        Raises:
            NotFoundError: If the server does not hold the chunk
            TransientError: On network failure or server error
        """
        response = self._request('GET', f"/chunk/{chunk_hash}")
        self._raise_for_error(response)
        return response.content

    def put_chunk(self, chunk_hash: str, data: bytes) -> bool:
        return self._put(f"/chunk/{chunk_hash}", data, 'application/octet-stream')

    def has_stream(self, stream_id: str) -> bool:
        return self._exists(f"/stream/{stream_id}")

    def fetch_stream(self, stream_id: str) -> Stream:
        response = self._request('GET', f"/stream/{stream_id}")
        self._raise_for_error(response)
        return decode_stream(response.content, expected_id=stream_id)

    def put_stream(self, stream: Stream) -> bool:
        return self._put(f"/stream/{stream.stream_id}", encode_stream(stream), 'application/json')

    def has_tree(self, tree_id: str) -> bool:
        return self._exists(f"/tree/{tree_id}")

    def fetch_tree(self, tree_id: str) -> Tree:
        response = self._request('GET', f"/tree/{tree_id}")
        self._raise_for_error(response)
        return decode_tree(response.content, expected_id=tree_id)

    def put_tree(self, tree: Tree) -> bool:
        return self._put(f"/tree/{tree.tree_id}", encode_tree(tree), 'application/json')

    def health(self) -> dict:
        response = self._request('GET', "/health")
        self._raise_for_error(response)
        return response.json()

    def close(self) -> None:
        """Close HTTP session."""
        self.session.close()
