"""Dependency graph over source units and symbols, built fresh for every run."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from .models import (
    Edge,
    EdgeKind,
    Extraction,
    ReferenceKind,
    SourceUnit,
    Symbol,
    UnresolvedReference,
    file_node_id,
    symbol_node_id,
)
from .parser import Extractor, LexicalExtractor

logger = logging.getLogger(__name__)


class DependencyGraph:
    """Units, symbols and typed edges with symmetric forward/reverse adjacency."""

    def __init__(self) -> None:
        self.units: Dict[str, SourceUnit] = {}
        self.symbols: Dict[str, Symbol] = {}
        self._edges: Set[Edge] = set()
        self._forward: Dict[str, Set[Edge]] = defaultdict(set)
        self._reverse: Dict[str, Set[Edge]] = defaultdict(set)

    # -- construction ----------------------------------------------------

    def add_unit(self, unit: SourceUnit) -> None:
        self.units[unit.path] = unit

    def add_symbol(self, symbol: Symbol) -> None:
        self.symbols[symbol.name] = symbol

    def add_edge(self, src: str, dst: str, kind: EdgeKind) -> bool:
        """Add an edge; returns False when it already existed or is a self-loop."""
        if src == dst:
            return False
        edge = Edge(src=src, dst=dst, kind=kind)
        if edge in self._edges:
            return False
        self._edges.add(edge)
        self._forward[src].add(edge)
        self._reverse[dst].add(edge)
        return True

    # -- queries ---------------------------------------------------------

    @property
    def edges(self) -> List[Edge]:
        return sorted(self._edges, key=lambda e: (e.src, e.dst, e.kind.value))

    def node_ids(self) -> List[str]:
        ids = [file_node_id(p) for p in self.units]
        ids.extend(symbol_node_id(n) for n in self.symbols)
        return sorted(ids)

    def has_node(self, node_id: str) -> bool:
        kind, _, key = node_id.partition(":")
        if kind == "file":
            return key in self.units
        return kind == "symbol" and key in self.symbols

    def successors(self, node_id: str, kinds: Optional[Iterable[EdgeKind]] = None) -> List[str]:
        allowed = set(kinds) if kinds is not None else None
        return sorted(
            e.dst for e in self._forward.get(node_id, ())
            if allowed is None or e.kind in allowed
        )

    def predecessors(self, node_id: str, kinds: Optional[Iterable[EdgeKind]] = None) -> List[str]:
        allowed = set(kinds) if kinds is not None else None
        return sorted(
            e.src for e in self._reverse.get(node_id, ())
            if allowed is None or e.kind in allowed
        )

    def edges_from(self, node_id: str) -> List[Edge]:
        return sorted(self._forward.get(node_id, ()), key=lambda e: (e.dst, e.kind.value))

    def edges_to(self, node_id: str) -> List[Edge]:
        return sorted(self._reverse.get(node_id, ()), key=lambda e: (e.src, e.kind.value))

    def stats(self) -> Dict[str, int]:
        counts = {kind.value: 0 for kind in EdgeKind}
        for edge in self._edges:
            counts[edge.kind.value] += 1
        return {"units": len(self.units), "symbols": len(self.symbols), "edges": len(self._edges), **counts}


@dataclass
class BuildResult:
    graph: DependencyGraph
    unresolved: List[UnresolvedReference] = field(default_factory=list)
    extractions: Dict[str, Extraction] = field(default_factory=dict)
    failed_units: List[str] = field(default_factory=list)

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved)

    @property
    def trigger_names(self) -> List[str]:
        return sorted({n for ex in self.extractions.values() for n in ex.trigger_names})

    @property
    def string_words(self) -> Set[str]:
        return {w for ex in self.extractions.values() for w in ex.string_words}


class GraphBuilder:
    """Folds per-unit extraction output into one :class:`DependencyGraph`.

    Resolution is two-pass: every definition in every unit is registered
    before any reference is resolved, so unit order never matters.
    """

    def __init__(self, extractor: Optional[Extractor] = None) -> None:
        self.extractor = extractor or LexicalExtractor()

    def build(self, units: Sequence[SourceUnit]) -> BuildResult:
        graph = DependencyGraph()
        result = BuildResult(graph=graph)

        # Pass 1: units and definitions.
        for unit in units:
            graph.add_unit(unit)
            extraction = self.extractor.extract(unit)
            result.extractions[unit.path] = extraction
            if extraction.failed:
                result.failed_units.append(unit.path)
            for definition in extraction.definitions:
                symbol = graph.symbols.get(definition.name)
                if symbol is None:
                    symbol = Symbol(name=definition.name)
                    graph.add_symbol(symbol)
                symbol.definitions.append(definition)
                graph.add_edge(unit.node_id, symbol.node_id, EdgeKind.DEFINES)

        for name, symbol in graph.symbols.items():
            if symbol.is_multiply_defined:
                logger.warning("Symbol '%s' is defined in %s", name, ", ".join(symbol.defining_units))

        # Pass 2: references and includes against the complete table.
        base_index = _unit_index(units)
        for unit in units:
            extraction = result.extractions[unit.path]
            for ref in extraction.references:
                if ref.name not in graph.symbols:
                    if ref.kind != ReferenceKind.MEMBER_CALL:
                        result.unresolved.append(
                            UnresolvedReference(unit.path, ref.name, ref.line, ref.kind)
                        )
                    continue
                src = unit.node_id
                if ref.enclosing and ref.enclosing in graph.symbols:
                    src = symbol_node_id(ref.enclosing)
                graph.add_edge(src, symbol_node_id(ref.name), EdgeKind.REFERENCES)

            for target in extraction.includes:
                matches = base_index.get(_include_key(target), [])
                if not matches:
                    result.unresolved.append(
                        UnresolvedReference(unit.path, target, 0, ReferenceKind.INCLUDE)
                    )
                    continue
                for path in matches:
                    graph.add_edge(unit.node_id, file_node_id(path), EdgeKind.INCLUDES)

        logger.info(
            "Built graph: %d units, %d symbols, %d edges, %d unresolved references",
            len(graph.units), len(graph.symbols), len(graph.edges), result.unresolved_count,
        )
        return result


def _include_key(name: str) -> str:
    return name.strip().lower()


def _unit_index(units: Iterable[SourceUnit]) -> Dict[str, List[str]]:
    """Map extension-less names (bare and relative) to unit paths."""
    index: Dict[str, List[str]] = defaultdict(list)
    for unit in units:
        keys = {_include_key(unit.base_name)}
        stem, dot, _ = unit.path.rpartition(".")
        if dot:
            keys.add(_include_key(stem))
        for key in keys:
            index[key].append(unit.path)
    return index
