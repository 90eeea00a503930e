"""FastAPI application exposing a Repository over HTTP."""

import time
import uuid

from fastapi import APIRouter, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from common.exceptions import (
    ChunkSyncError,
    HashMismatchError,
    ImmutableConflictError,
    IncompleteStreamError,
    ManifestFormatError,
    NotFoundError,
    TransientError,
)
from common.hashing import is_valid_digest
from common.logging_config import get_logger
from repository.base import Repository
from repository.schemas import ErrorResponse, HealthResponse, PutResponse
from streams.manifest import decode_stream, decode_tree, encode_stream, encode_tree

logger = get_logger(__name__)

OCTET_STREAM = "application/octet-stream"
MANIFEST_MEDIA_TYPE = "application/json"


def _repository(request: Request) -> Repository:
    return request.app.state.repository


def _require_id(value: str, kind: str) -> None:
    if not is_valid_digest(value):
        raise NotFoundError(f"{kind} {value} not found")


def _presence(found: bool) -> Response:
    return Response(status_code=status.HTTP_200_OK if found else status.HTTP_404_NOT_FOUND)


def _put_response(manifest_id: str, created: bool) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        content=PutResponse(id=manifest_id, created=created).model_dump()
    )


router = APIRouter(responses={
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
})


@router.head("/chunk/{chunk_hash}")
def head_chunk(chunk_hash: str, request: Request):
    """Report whether a chunk is present (200) or absent (404)."""
    return _presence(is_valid_digest(chunk_hash) and _repository(request).has_chunk(chunk_hash))


@router.get("/chunk/{chunk_hash}")
def get_chunk(chunk_hash: str, request: Request):
    """
    Download a chunk's raw bytes.

    Raises:
        - 404: Chunk not found
        - 422: Stored chunk failed re-verification
    """
    _require_id(chunk_hash, "Chunk")
    data = _repository(request).fetch_chunk(chunk_hash)
    return Response(content=data, media_type=OCTET_STREAM)


@router.put("/chunk/{chunk_hash}", response_model=PutResponse)
async def put_chunk(chunk_hash: str, request: Request):
    """
    Upload a chunk's raw bytes under its content hash.

    Returns:
        - 201 if stored, 200 if it already existed

    Raises:
        - 422: Body does not hash to chunk_hash
    """
    data = await request.body()
    created = await run_in_threadpool(_repository(request).put_chunk, chunk_hash, data)
    return _put_response(chunk_hash, created)


@router.head("/stream/{stream_id}")
def head_stream(stream_id: str, request: Request):
    return _presence(is_valid_digest(stream_id) and _repository(request).has_stream(stream_id))


@router.get("/stream/{stream_id}")
def get_stream(stream_id: str, request: Request):
    _require_id(stream_id, "Stream")
    stream = _repository(request).fetch_stream(stream_id)
    return Response(content=encode_stream(stream), media_type=MANIFEST_MEDIA_TYPE)


@router.put("/stream/{stream_id}", response_model=PutResponse)
async def put_stream(stream_id: str, request: Request):
    """
    Publish a serialized stream manifest.

    Raises:
        - 400: Manifest cannot be decoded
        - 409: A different manifest already exists under stream_id
        - 422: Manifest ID mismatch, or chunks not yet uploaded
    """
    stream = decode_stream(await request.body(), expected_id=stream_id)
    created = await run_in_threadpool(_repository(request).put_stream, stream)
    return _put_response(stream_id, created)


@router.head("/tree/{tree_id}")
def head_tree(tree_id: str, request: Request):
    return _presence(is_valid_digest(tree_id) and _repository(request).has_tree(tree_id))


@router.get("/tree/{tree_id}")
def get_tree(tree_id: str, request: Request):
    _require_id(tree_id, "Tree")
    tree = _repository(request).fetch_tree(tree_id)
    return Response(content=encode_tree(tree), media_type=MANIFEST_MEDIA_TYPE)


@router.put("/tree/{tree_id}", response_model=PutResponse)
async def put_tree(tree_id: str, request: Request):
    tree = decode_tree(await request.body(), expected_id=tree_id)
    created = await run_in_threadpool(_repository(request).put_tree, tree)
    return _put_response(tree_id, created)


@router.get("/health", response_model=HealthResponse)
def health_check(request: Request):
    """
    Health check endpoint.
    Returns 200 if service is alive.
    """
    algorithm = getattr(_repository(request), "algorithm", "unknown")
    return HealthResponse(status="healthy", service="repository", algorithm=algorithm)


def _error_response(request: Request, exc: Exception, status_code: int, code: str, **extra) -> JSONResponse:
    request_id = getattr(request.state, 'request_id', 'unknown')
    logger.warning(
        f"{type(exc).__name__}: {exc} [request_id={request_id}] path={request.url.path}"
    )
    return JSONResponse(
        status_code=status_code,
        content={**ErrorResponse(detail=str(exc), code=code).model_dump(), **extra}
    )


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(request, exc, status.HTTP_404_NOT_FOUND, "NOT_FOUND")

    @app.exception_handler(ImmutableConflictError)
    async def immutable_conflict_handler(request: Request, exc: ImmutableConflictError):
        return _error_response(request, exc, status.HTTP_409_CONFLICT, "IMMUTABLE_CONFLICT")

    @app.exception_handler(HashMismatchError)
    async def hash_mismatch_handler(request: Request, exc: HashMismatchError):
        return _error_response(
            request, exc, status.HTTP_422_UNPROCESSABLE_ENTITY, "HASH_MISMATCH",
            expected=exc.expected, actual=exc.actual
        )

    @app.exception_handler(IncompleteStreamError)
    async def incomplete_stream_handler(request: Request, exc: IncompleteStreamError):
        return _error_response(
            request, exc, status.HTTP_422_UNPROCESSABLE_ENTITY, "INCOMPLETE_STREAM",
            manifest_id=exc.manifest_id, missing=exc.missing
        )

    @app.exception_handler(ManifestFormatError)
    async def manifest_format_handler(request: Request, exc: ManifestFormatError):
        return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "MANIFEST_FORMAT")

    @app.exception_handler(TransientError)
    async def transient_handler(request: Request, exc: TransientError):
        return _error_response(request, exc, status.HTTP_503_SERVICE_UNAVAILABLE, "TRANSIENT")

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error_response(request, exc, status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST")

    @app.exception_handler(ChunkSyncError)
    async def chunksync_error_handler(request: Request, exc: ChunkSyncError):
        request_id = getattr(request.state, 'request_id', 'unknown')
        logger.error(
            f"Unhandled repository error: {exc} [request_id={request_id}] path={request.url.path}",
            exc_info=True
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(detail=str(exc), code="INTERNAL_ERROR").model_dump()
        )


def create_app(repository: Repository) -> FastAPI:
    """
    Build the HTTP application serving one repository.

    Args:
        repository: Backing Repository (usually a FilesystemRepository)

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="chunksync repository",
        description="Content-addressed chunk and manifest repository",
        version="1.0.0"
    )
    app.state.repository = repository

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Middleware to log all HTTP requests and responses.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        logger.debug(
            f"Request started: {request.method} {request.url.path} [request_id={request_id}]"
        )

        response = await call_next(request)

        duration = time.time() - start_time
        logger.info(
            f"Request completed: {request.method} {request.url.path} "
            f"status={response.status_code} duration={duration:.3f}s [request_id={request_id}]"
        )

        response.headers["X-Request-ID"] = request_id
        return response

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("Repository server shutting down...")
        repository.close()

    _register_exception_handlers(app)
    app.include_router(router)
    return app
