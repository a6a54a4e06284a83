"""Cross-File Index."""

# codepolicy:domain=index

from codepolicy.index.cross_file import (
    CrossFileIndex,
    Definition,
    DirectoryStats,
    ResolvedImport,
    RetryImplementation,
    build_index,
    resolve_edge,
)

__all__ = [
    "CrossFileIndex",
    "Definition",
    "DirectoryStats",
    "ResolvedImport",
    "RetryImplementation",
    "build_index",
    "resolve_edge",
]
