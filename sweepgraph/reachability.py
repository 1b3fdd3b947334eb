"""Mark phase: reachability from the root set over the dependency graph."""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Deque, Iterable, List, Optional, Pattern, Set, Tuple

from .config_manager import SweepSettings
from .graph import BuildResult, DependencyGraph, GraphBuilder
from .models import (
    AnalysisResult,
    EdgeKind,
    UnresolvedReference,
    UnusedFile,
    UnusedSymbol,
    file_node_id,
    symbol_node_id,
)
from .parser import LexicalExtractor, collect_units

logger = logging.getLogger(__name__)

_DIRECT = "direct"
_OWNER = "owner"


@dataclass
class RootSet:
    """Names and files that are always live, whatever the edges say."""

    names: Set[str] = field(default_factory=set)
    patterns: List[str] = field(default_factory=list)
    files: Set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        self._compiled: List[Pattern[str]] = [re.compile(p) for p in self.patterns]

    @classmethod
    def from_settings(cls, settings: SweepSettings, trigger_names: Iterable[str] = ()) -> "RootSet":
        return cls(
            names=set(settings.entry_points) | set(trigger_names),
            patterns=list(settings.protected_patterns),
            files=set(settings.root_files),
        )

    def matches(self, name: str) -> bool:
        return name in self.names or any(p.search(name) for p in self._compiled)

    def matches_file(self, path: str) -> bool:
        return path in self.files or path.rsplit("/", 1)[-1] in self.files


class ReachabilityAnalyzer:
    """Breadth-first marking over DEFINES, REFERENCES and INCLUDES edges.

    Units are visited in one of two modes. A unit reached *directly* (it
    defines a root, is a root file, or is included) expands everything it
    defines. A unit that is live only because it owns a reached symbol
    follows its own references and includes, but its other definitions stay
    unmarked unless something references them.
    """

    def __init__(self, graph: DependencyGraph, roots: RootSet) -> None:
        self.graph = graph
        self.roots = roots

    def root_symbols(self) -> List[str]:
        return sorted(name for name in self.graph.symbols if self.roots.matches(name))

    def root_units(self) -> List[str]:
        paths = {p for p in self.graph.units if self.roots.matches_file(p)}
        for name in self.root_symbols():
            paths.update(self.graph.symbols[name].defining_units)
        return sorted(paths)

    def mark(self) -> Set[str]:
        graph = self.graph
        expanded: Set[Tuple[str, str]] = set()
        marked: Set[str] = set()
        queue: Deque[Tuple[str, str]] = deque()

        for path in self.root_units():
            queue.append((file_node_id(path), _DIRECT))
        for name in self.root_symbols():
            queue.append((symbol_node_id(name), _DIRECT))

        while queue:
            node, mode = queue.popleft()
            if (node, mode) in expanded or (node, _DIRECT) in expanded:
                continue
            expanded.add((node, mode))
            marked.add(node)

            if node.startswith("file:"):
                kinds = [EdgeKind.REFERENCES, EdgeKind.INCLUDES]
                if mode == _DIRECT:
                    kinds.append(EdgeKind.DEFINES)
                for edge in graph.edges_from(node):
                    if edge.kind in kinds:
                        queue.append((edge.dst, _DIRECT))
            else:
                for dst in graph.successors(node, [EdgeKind.REFERENCES]):
                    queue.append((dst, _DIRECT))
                for owner in graph.predecessors(node, [EdgeKind.DEFINES]):
                    queue.append((owner, _OWNER))
        return marked

    def analyze(self, build: Optional[BuildResult] = None) -> AnalysisResult:
        graph = self.graph
        marked = self.mark()

        # Roots are live even when the traversal above could not reach them.
        for name in self.root_symbols():
            marked.add(symbol_node_id(name))
        for path in self.root_units():
            marked.add(file_node_id(path))

        string_words: Set[str] = build.string_words if build else set()
        unresolved: List[UnresolvedReference] = build.unresolved if build else []

        used_files: List[str] = []
        unused_files: List[UnusedFile] = []
        for path in sorted(graph.units):
            node = file_node_id(path)
            if node in marked:
                used_files.append(path)
                continue
            unit = graph.units[path]
            unused_files.append(UnusedFile(
                path=path,
                kind=unit.kind,
                size=unit.size,
                dependencies=[
                    e.dst for e in graph.edges_from(node) if e.kind != EdgeKind.DEFINES
                ],
                dependents=[
                    e.src for e in graph.edges_to(node) if e.kind != EdgeKind.DEFINES
                ],
            ))

        used_symbols: List[str] = []
        unused_symbols: List[UnusedSymbol] = []
        for name in sorted(graph.symbols):
            symbol = graph.symbols[name]
            if symbol.node_id in marked:
                used_symbols.append(name)
                continue
            unused_symbols.append(UnusedSymbol(
                name=name,
                definitions=sorted(symbol.definitions, key=lambda d: (d.unit_path, d.start_line)),
                unit_kinds={p: graph.units[p].kind for p in symbol.defining_units},
                mentioned_in_strings=name in string_words,
            ))

        logger.info(
            "Reachability: %d/%d files used, %d/%d symbols used",
            len(used_files), len(graph.units), len(used_symbols), len(graph.symbols),
        )
        return AnalysisResult(
            used_files=used_files,
            unused_files=unused_files,
            used_symbols=used_symbols,
            unused_symbols=unused_symbols,
            root_names=self.root_symbols(),
            root_files=self.root_units(),
            unresolved=list(unresolved),
            graph=graph,
        )


def analyze_tree(root: Path, settings: Optional[SweepSettings] = None) -> AnalysisResult:
    """Collect, extract, build and mark in one call; nothing is cached between calls."""
    settings = settings or SweepSettings()
    units = collect_units(root, settings.skip_dirs)
    extractor = LexicalExtractor(
        bridge_objects=settings.bridge_objects,
        bridge_modifiers=settings.bridge_modifiers,
        extra_builtins=settings.extra_builtins,
    )
    build = GraphBuilder(extractor).build(units)
    roots = RootSet.from_settings(settings, build.trigger_names)
    return ReachabilityAnalyzer(build.graph, roots).analyze(build)
