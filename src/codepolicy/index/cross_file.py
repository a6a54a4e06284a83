"""Cross-File Index: one-shot, read-only repository aggregate.

Built once every per-file extraction has finished. Nothing in here is
updated afterwards; index-scope rules only read it.
"""

# codepolicy:domain=index

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from codepolicy.metrics.extractor import FileMetrics
    from codepolicy.symbols.model import DependencyEdge

logger = logging.getLogger(__name__)

# Top-level names that are conventionally repeated per module.
_IGNORED_DEFINITIONS: frozenset[str] = frozenset({"main", "setup", "teardown", "cli"})


@dataclass(frozen=True)
class Definition:
    """A top-level function defined in a unit."""

    name: str
    path: str
    line: int
    domain: str


@dataclass(frozen=True)
class RetryImplementation:
    """A callable that carries its own retry logic."""

    path: str
    qualname: str
    line: int
    style: str  # "loop" | "decorator" | "client"


@dataclass(frozen=True)
class DirectoryStats:
    directory: str
    depth: int
    file_count: int
    line_count: int


@dataclass(frozen=True)
class ResolvedImport:
    """A DependencyEdge whose target is another scanned unit."""

    source: str
    target: str  # unit path
    line: int
    names: tuple[str, ...] = ()


@dataclass(frozen=True)
class CrossFileIndex:
    """Repository-wide aggregate. All mappings are read-only views."""

    modules: Mapping[str, str]  # dotted module -> unit path
    domains: Mapping[str, str]  # unit path -> domain
    imports: tuple[ResolvedImport, ...]
    unit_fan_in: Mapping[str, int]  # unit path -> distinct importing units
    definitions: Mapping[str, tuple[Definition, ...]]  # name -> definitions
    identifier_users: Mapping[str, tuple[str, ...]]  # name -> non-defining unit paths
    directories: tuple[DirectoryStats, ...]
    retry_implementations: tuple[RetryImplementation, ...]

    @property
    def file_count(self) -> int:
        return len(self.domains)

    def fan_in(self, name: str) -> int:
        """Distinct units (other than its definers) referencing *name*."""
        return len(self.identifier_users.get(name, ()))

    def resolve(self, module: str) -> str | None:
        return self.modules.get(module)


# ---------------------------------------------------------------------------
# Import resolution
# ---------------------------------------------------------------------------


def _suffix_lookup(modules: Mapping[str, str], dotted: str) -> str | None:
    """Match *dotted* against a module name exactly, then by dotted suffix."""
    if dotted in modules:
        return modules[dotted]
    suffix = "." + dotted
    matches = sorted(path for name, path in modules.items() if name.endswith(suffix))
    return matches[0] if len(matches) == 1 else None


def _relative_base(source_module: str, source_path: str, level: int) -> str:
    parts = source_module.split(".") if source_module else []
    if not source_path.endswith("__init__.py"):
        parts = parts[:-1]
    if level > 1:
        parts = parts[: max(0, len(parts) - (level - 1))]
    return ".".join(parts)


def resolve_edge(
    edge: DependencyEdge,
    modules: Mapping[str, str],
    source_module: str,
) -> str | None:
    """Resolve *edge* to a unit path, or ``None`` for external targets."""
    if edge.relative_level:
        base = _relative_base(source_module, edge.source, edge.relative_level)
        target = ".".join(p for p in (base, edge.target) if p)
    else:
        target = edge.target

    # ``from pkg import mod`` names a module before it names an attribute.
    for name in edge.names:
        if name == "*":
            continue
        submodule = f"{target}.{name}" if target else name
        if edge.relative_level:
            found = modules.get(submodule)
        else:
            found = _suffix_lookup(modules, submodule)
        if found is not None:
            return found
    if not target:
        return None
    if edge.relative_level:
        return modules.get(target)
    return _suffix_lookup(modules, target)


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------


def _referenced_names(fm: FileMetrics) -> set[str]:
    names: set[str] = set()
    for edge in fm.unit.imports:
        names.update(n for n in edge.names if n != "*")
    for item in fm.unit.callables:
        for call in item.calls:
            names.add(call.method)
        for deco in item.decorators:
            names.add(deco.method)
    return names


def build_index(files: Iterable[FileMetrics]) -> CrossFileIndex:
    """Build the Cross-File Index from every successfully extracted file."""
    ordered = sorted(files, key=lambda fm: fm.unit.path)

    modules: dict[str, str] = {}
    domains: dict[str, str] = {}
    for fm in ordered:
        domains[fm.unit.path] = fm.unit.domain
        module = fm.unit_metrics.module
        if module in modules:
            logger.debug("Module %s defined by %s and %s", module, modules[module], fm.unit.path)
            continue
        modules[module] = fm.unit.path

    # Imports and unit fan-in.
    resolved: list[ResolvedImport] = []
    importers: dict[str, set[str]] = defaultdict(set)
    for fm in ordered:
        for edge in fm.unit.imports:
            target = resolve_edge(edge, modules, fm.unit_metrics.module)
            if target is None or target == fm.unit.path:
                continue
            resolved.append(
                ResolvedImport(source=fm.unit.path, target=target, line=edge.line, names=edge.names)
            )
            importers[target].add(fm.unit.path)

    # Definitions and identifier fan-in.
    definitions: dict[str, list[Definition]] = defaultdict(list)
    for fm in ordered:
        for item in fm.unit.callables:
            if item.kind != "function" or "." in item.qualname:
                continue
            name = item.name
            if name in _IGNORED_DEFINITIONS or name.startswith(("__", "test_")):
                continue
            definitions[name].append(
                Definition(
                    name=name, path=fm.unit.path, line=item.line_start, domain=fm.unit.domain
                )
            )

    users: dict[str, set[str]] = defaultdict(set)
    for fm in ordered:
        for name in _referenced_names(fm) & definitions.keys():
            definers = {d.path for d in definitions[name]}
            if fm.unit.path not in definers:
                users[name].add(fm.unit.path)

    # Directory statistics.
    dir_files: dict[str, int] = defaultdict(int)
    dir_lines: dict[str, int] = defaultdict(int)
    dir_depth: dict[str, int] = {}
    for fm in ordered:
        um = fm.unit_metrics
        dir_files[um.directory] += 1
        dir_lines[um.directory] += um.line_count
        dir_depth[um.directory] = um.directory_depth
    directories = tuple(
        DirectoryStats(
            directory=d, depth=dir_depth[d], file_count=dir_files[d], line_count=dir_lines[d]
        )
        for d in sorted(dir_files)
    )

    # Independent retry implementations.
    retries = tuple(
        RetryImplementation(
            path=fm.unit.path, qualname=cm.qualname, line=cm.line, style=cm.retry_style
        )
        for fm in ordered
        for cm in fm.callables
        if cm.retry_style is not None
    )

    index = CrossFileIndex(
        modules=MappingProxyType(modules),
        domains=MappingProxyType(domains),
        imports=tuple(resolved),
        unit_fan_in=MappingProxyType({p: len(srcs) for p, srcs in sorted(importers.items())}),
        definitions=MappingProxyType({n: tuple(d) for n, d in sorted(definitions.items())}),
        identifier_users=MappingProxyType(
            {n: tuple(sorted(u)) for n, u in sorted(users.items())}
        ),
        directories=directories,
        retry_implementations=retries,
    )
    logger.debug(
        "Index built: %d units, %d resolved imports, %d retry implementations",
        len(domains),
        len(resolved),
        len(retries),
    )
    return index
