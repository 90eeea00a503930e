"""
Stable, versioned manifest codec for streams and trees.

Manifests are canonical JSON (sorted keys, compact separators, UTF-8). The
manifest ID is the digest of the canonical body without its "id" field, so
two builds that agree on the body always agree on the ID, and a decoder can
recompute and check it.
"""

import json
from typing import Iterable, Optional

from common.constants import CHUNK_SIZE_BYTES, DEFAULT_HASH_ALGORITHM, MANIFEST_FORMAT_VERSION
from common.exceptions import HashMismatchError, ManifestFormatError
from common.hashing import SUPPORTED_ALGORITHMS, compute_digest, is_valid_digest
from common.types import Stream, StreamMetadata, Symlink, Tree

STREAM_KIND = "stream"
TREE_KIND = "tree"


def canonical_json(obj: dict) -> bytes:
    """Serialize obj deterministically."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _stream_body(chunks: Iterable[str], metadata: StreamMetadata, algorithm: str, chunk_size: int) -> dict:
    return {
        "format": MANIFEST_FORMAT_VERSION,
        "kind": STREAM_KIND,
        "algorithm": algorithm,
        "chunk_size": chunk_size,
        "chunks": list(chunks),
        "metadata": {
            "size": metadata.size,
            "mode": metadata.mode,
            "mtime": metadata.mtime,
            "path": metadata.path,
            "digest": metadata.digest,
        },
    }


def _tree_body(mode: int, streams, subtrees, symlinks, algorithm: str) -> dict:
    return {
        "format": MANIFEST_FORMAT_VERSION,
        "kind": TREE_KIND,
        "algorithm": algorithm,
        "mode": mode,
        "files": {name: stream_id for name, stream_id in streams},
        "dirs": {name: tree_id for name, tree_id in subtrees},
        "symlinks": {link.name: link.target for link in symlinks},
    }


def derive_stream_id(
    chunks: Iterable[str],
    metadata: StreamMetadata,
    algorithm: str = DEFAULT_HASH_ALGORITHM,
    chunk_size: int = CHUNK_SIZE_BYTES,
) -> str:
    """
    Derive the deterministic stream ID for a chunk list and metadata.

    Returns:
        Hex digest of the canonical manifest body
    """
    return compute_digest(canonical_json(_stream_body(chunks, metadata, algorithm, chunk_size)), algorithm)


def new_stream(
    chunks: Iterable[str],
    metadata: StreamMetadata,
    algorithm: str = DEFAULT_HASH_ALGORITHM,
    chunk_size: int = CHUNK_SIZE_BYTES,
) -> Stream:
    """Build a Stream value with its derived ID."""
    chunks = tuple(chunks)
    _check_chunk_count(len(chunks), metadata.size, chunk_size)
    return Stream(
        stream_id=derive_stream_id(chunks, metadata, algorithm, chunk_size),
        chunks=chunks,
        metadata=metadata,
        algorithm=algorithm,
        chunk_size=chunk_size,
    )


def new_tree(mode: int, streams=(), subtrees=(), symlinks=(), algorithm: str = DEFAULT_HASH_ALGORITHM) -> Tree:
    """Build a Tree value (entries sorted by name) with its derived ID."""
    streams = tuple(sorted(streams))
    subtrees = tuple(sorted(subtrees))
    symlinks = tuple(sorted(symlinks, key=lambda link: link.name))
    body = _tree_body(mode, streams, subtrees, symlinks, algorithm)
    return Tree(
        tree_id=compute_digest(canonical_json(body), algorithm),
        mode=mode,
        streams=streams,
        subtrees=subtrees,
        symlinks=symlinks,
        algorithm=algorithm,
    )


def encode_stream(stream: Stream) -> bytes:
    """Serialize a stream manifest (body plus its ID)."""
    body = _stream_body(stream.chunks, stream.metadata, stream.algorithm, stream.chunk_size)
    body["id"] = stream.stream_id
    return canonical_json(body)


def encode_tree(tree: Tree) -> bytes:
    """Serialize a tree manifest (body plus its ID)."""
    body = _tree_body(tree.mode, tree.streams, tree.subtrees, tree.symlinks, tree.algorithm)
    body["id"] = tree.tree_id
    return canonical_json(body)


def _load(data: bytes, kind: str, expected_id: Optional[str]) -> tuple[dict, str]:
    try:
        body = json.loads(data)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ManifestFormatError(f"Invalid {kind} manifest: {e}")
    if not isinstance(body, dict):
        raise ManifestFormatError(f"Invalid {kind} manifest: expected an object")

    version = body.get("format")
    if not isinstance(version, int) or version < 1 or version > MANIFEST_FORMAT_VERSION:
        raise ManifestFormatError(f"Unsupported manifest format: {version!r}")
    if body.get("kind") != kind:
        raise ManifestFormatError(f"Expected a {kind} manifest, got {body.get('kind')!r}")

    algorithm = body.get("algorithm")
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ManifestFormatError(f"Unsupported manifest algorithm: {algorithm!r}")

    claimed_id = body.pop("id", None)
    actual_id = compute_digest(canonical_json(body), algorithm)
    if claimed_id is not None and claimed_id != actual_id:
        raise HashMismatchError(claimed_id, actual_id, f"{kind} manifest ID does not match its content")
    if expected_id is not None and expected_id != actual_id:
        raise HashMismatchError(expected_id, actual_id, f"{kind} manifest does not match requested ID")
    return body, actual_id


def _check_chunk_count(count: int, size: int, chunk_size: int) -> None:
    if not 0 < chunk_size <= CHUNK_SIZE_BYTES:
        raise ManifestFormatError(f"Invalid chunk size: {chunk_size}")
    if size < 0:
        raise ManifestFormatError(f"Invalid stream size: {size}")
    expected = -(-size // chunk_size)
    if count != expected:
        raise ManifestFormatError(
            f"Stream of {size} bytes needs {expected} chunks of {chunk_size}, manifest lists {count}"
        )


def decode_stream(data: bytes, expected_id: Optional[str] = None) -> Stream:
    """
    Parse and validate a serialized stream manifest.

    Args:
        data: Serialized manifest bytes
        expected_id: Stream ID the caller asked for, if any

    Returns:
        Stream value

    Raises:
        ManifestFormatError: Malformed or unsupported manifest
        HashMismatchError: Manifest content does not match its ID
    """
    body, stream_id = _load(data, STREAM_KIND, expected_id)
    try:
        meta = body["metadata"]
        metadata = StreamMetadata(
            size=int(meta["size"]),
            mode=int(meta["mode"]),
            mtime=int(meta["mtime"]),
            path=meta.get("path"),
            digest=meta.get("digest", ""),
        )
        chunks = tuple(body["chunks"])
        chunk_size = int(body["chunk_size"])
    except (KeyError, TypeError, ValueError) as e:
        raise ManifestFormatError(f"Invalid stream manifest field: {e}")

    if not all(isinstance(h, str) and is_valid_digest(h) for h in chunks):
        raise ManifestFormatError("Stream manifest lists an invalid chunk hash")
    _check_chunk_count(len(chunks), metadata.size, chunk_size)

    return Stream(
        stream_id=stream_id,
        chunks=chunks,
        metadata=metadata,
        algorithm=body["algorithm"],
        chunk_size=chunk_size,
    )


def decode_tree(data: bytes, expected_id: Optional[str] = None) -> Tree:
    """
    Parse and validate a serialized tree manifest.

    Raises:
        ManifestFormatError: Malformed or unsupported manifest
        HashMismatchError: Manifest content does not match its ID
    """
    body, tree_id = _load(data, TREE_KIND, expected_id)
    try:
        mode = int(body["mode"])
        streams = tuple(sorted(body["files"].items()))
        subtrees = tuple(sorted(body["dirs"].items()))
        symlinks = tuple(Symlink(name, target) for name, target in sorted(body["symlinks"].items()))
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ManifestFormatError(f"Invalid tree manifest field: {e}")

    for name in [n for n, _ in streams + subtrees] + [link.name for link in symlinks]:
        if not name or name in (".", "..") or "/" in name or "\0" in name:
            raise ManifestFormatError(f"Tree manifest has an unsafe entry name: {name!r}")
    for _, ref in streams + subtrees:
        if not isinstance(ref, str) or not is_valid_digest(ref):
            raise ManifestFormatError("Tree manifest lists an invalid reference")

    return Tree(
        tree_id=tree_id,
        mode=mode,
        streams=streams,
        subtrees=subtrees,
        symlinks=symlinks,
        algorithm=body["algorithm"],
    )
