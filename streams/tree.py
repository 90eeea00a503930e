"""Directory trees: build Tree manifests from a directory and deploy them back."""

import os
import stat
from pathlib import Path
from typing import Callable

from common.constants import DEFAULT_HASH_ALGORITHM
from common.logging_config import get_logger
from common.types import Stream, Symlink, Tree
from streams.manifest import new_tree

logger = get_logger(__name__)


def build_tree(
    root: Path,
    import_file: Callable[[Path], Stream],
    commit_tree: Callable[[Tree], None],
    algorithm: str = DEFAULT_HASH_ALGORITHM,
) -> Tree:
    """
    Walk a directory bottom-up and build its Tree manifest.

    Every regular file is handed to import_file, which must return a
    committed Stream. Every subtree is passed to commit_tree before its
    parent is built, so a tree is only ever committed after its children.

    Args:
        root: Directory to walk
        import_file: Chunks and commits one file, returning its Stream
        commit_tree: Persists one Tree manifest
        algorithm: Digest algorithm for tree IDs

    Returns:
        Root Tree (also passed to commit_tree)
    """
    root = Path(root)
    streams = []
    subtrees = []
    symlinks = []

    with os.scandir(root) as entries:
        for entry in sorted(entries, key=lambda e: e.name):
            if entry.is_symlink():
                symlinks.append(Symlink(entry.name, os.readlink(entry.path)))
            elif entry.is_dir():
                subtree = build_tree(Path(entry.path), import_file, commit_tree, algorithm)
                subtrees.append((entry.name, subtree.tree_id))
            elif entry.is_file():
                stream = import_file(Path(entry.path))
                streams.append((entry.name, stream.stream_id))
            else:
                logger.warning(f"Skipping special file {entry.path}")

    tree = new_tree(
        mode=stat.S_IMODE(root.stat().st_mode),
        streams=streams,
        subtrees=subtrees,
        symlinks=symlinks,
        algorithm=algorithm,
    )
    commit_tree(tree)
    logger.debug(
        f"Built tree {tree.tree_id[:16]} for {root} "
        f"[files={len(streams)}, dirs={len(subtrees)}, links={len(symlinks)}]"
    )
    return tree


def iter_tree_streams(tree: Tree, load_tree: Callable[[str], Tree]):
    """Yield every stream ID referenced by tree and its subtrees (depth-first)."""
    for _, stream_id in tree.streams:
        yield stream_id
    for _, subtree_id in tree.subtrees:
        yield from iter_tree_streams(load_tree(subtree_id), load_tree)


def deploy_tree(
    tree: Tree,
    dest: Path,
    load_tree: Callable[[str], Tree],
    materialize: Callable[[str, Path], None],
) -> None:
    """
    Recreate a directory from its Tree manifest.

    Args:
        tree: Tree to deploy
        dest: Target directory (created if missing; existing entries are not overwritten)
        load_tree: Returns a committed subtree by ID
        materialize: Writes the file for a stream ID at the given path
    """
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)

    for name, subtree_id in tree.subtrees:
        deploy_tree(load_tree(subtree_id), dest / name, load_tree, materialize)

    for name, stream_id in tree.streams:
        materialize(stream_id, dest / name)

    for link in tree.symlinks:
        os.symlink(link.target, dest / link.name)

    os.chmod(dest, tree.mode)
