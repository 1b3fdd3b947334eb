"""Core data models shared by extraction, analysis, mutation and reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class UnitKind(str, Enum):
    BACKEND = "backend-module"
    FRONTEND = "frontend-template"
    CONFIG = "config"


class SymbolKind(str, Enum):
    FUNCTION = "function"
    BOUND_CALLABLE = "bound-callable"
    METHOD = "method"


class EdgeKind(str, Enum):
    DEFINES = "defines"
    REFERENCES = "references"
    INCLUDES = "includes"


class ReferenceKind(str, Enum):
    CALL = "call"
    BRIDGE = "bridge"
    HANDLER = "handler"
    DYNAMIC = "dynamic"
    MEMBER_CALL = "member-call"
    INCLUDE = "include"


class RiskLevel(str, Enum):
    """Deletion risk, ordered low < medium < high."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def within(self, threshold: "RiskLevel") -> bool:
        """True when this level is at or below *threshold*."""
        return self.rank <= threshold.rank

    @classmethod
    def parse(cls, value: str) -> "RiskLevel":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown risk level '{value}'. Expected one of: low, medium, high"
            ) from None


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH]


def file_node_id(rel_path: str) -> str:
    return f"file:{rel_path}"


def symbol_node_id(name: str) -> str:
    return f"symbol:{name}"


@dataclass(frozen=True)
class SourceUnit:
    """One file of the analysed tree, read once per run."""

    path: str
    kind: UnitKind
    text: str
    size: int

    @property
    def node_id(self) -> str:
        return file_node_id(self.path)

    @property
    def base_name(self) -> str:
        name = self.path.rsplit("/", 1)[-1]
        return name.split(".", 1)[0] if "." in name else name


@dataclass(frozen=True)
class SymbolDefinition:
    unit_path: str
    name: str
    kind: SymbolKind
    start_line: int
    end_line: int
    start_offset: int = 0
    end_offset: int = 0

    def contains(self, offset: int) -> bool:
        return self.start_offset <= offset < self.end_offset


@dataclass(frozen=True)
class Reference:
    """A candidate callee name observed in a unit."""

    name: str
    kind: ReferenceKind
    line: int
    enclosing: Optional[str] = None


@dataclass
class Extraction:
    """Per-unit output of the extractor."""

    unit_path: str
    definitions: List[SymbolDefinition] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)
    includes: List[str] = field(default_factory=list)
    trigger_names: List[str] = field(default_factory=list)
    string_words: List[str] = field(default_factory=list)
    failed: bool = False


@dataclass
class Symbol:
    name: str
    definitions: List[SymbolDefinition] = field(default_factory=list)

    @property
    def node_id(self) -> str:
        return symbol_node_id(self.name)

    @property
    def defining_units(self) -> List[str]:
        return sorted({d.unit_path for d in self.definitions})

    @property
    def is_multiply_defined(self) -> bool:
        return len(self.definitions) > 1


@dataclass(frozen=True)
class Edge:
    src: str
    dst: str
    kind: EdgeKind


@dataclass(frozen=True)
class UnresolvedReference:
    unit_path: str
    name: str
    line: int
    kind: ReferenceKind


@dataclass
class UnusedFile:
    path: str
    kind: UnitKind
    size: int
    dependencies: List[str] = field(default_factory=list)
    dependents: List[str] = field(default_factory=list)

    @property
    def node_id(self) -> str:
        return file_node_id(self.path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "kind": self.kind.value,
            "size": self.size,
            "dependencies": list(self.dependencies),
            "dependents": list(self.dependents),
        }


@dataclass
class UnusedSymbol:
    name: str
    definitions: List[SymbolDefinition]
    unit_kinds: Dict[str, UnitKind] = field(default_factory=dict)
    mentioned_in_strings: bool = False

    @property
    def node_id(self) -> str:
        return symbol_node_id(self.name)

    @property
    def defined_in(self) -> List[str]:
        return sorted({d.unit_path for d in self.definitions})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "defined_in": self.defined_in,
            "locations": [
                {"path": d.unit_path, "start_line": d.start_line, "end_line": d.end_line}
                for d in self.definitions
            ],
            "mentioned_in_strings": self.mentioned_in_strings,
        }


@dataclass
class AnalysisResult:
    """Mark-phase output: the graph partitioned into used and unused nodes."""

    used_files: List[str]
    unused_files: List[UnusedFile]
    used_symbols: List[str]
    unused_symbols: List[UnusedSymbol]
    root_names: List[str] = field(default_factory=list)
    root_files: List[str] = field(default_factory=list)
    unresolved: List[UnresolvedReference] = field(default_factory=list)
    graph: Any = None

    @property
    def total_files(self) -> int:
        return len(self.used_files) + len(self.unused_files)

    @property
    def total_symbols(self) -> int:
        return len(self.used_symbols) + len(self.unused_symbols)

    def summary(self) -> Dict[str, int]:
        return {
            "total_files": self.total_files,
            "used_files": len(self.used_files),
            "unused_files": len(self.unused_files),
            "total_symbols": self.total_symbols,
            "used_symbols": len(self.used_symbols),
            "unused_symbols": len(self.unused_symbols),
            "unresolved_references": len(self.unresolved),
        }

    def partitions(self) -> Dict[str, Any]:
        """Deterministic view of the four partitions, used for comparisons."""
        return {
            "used_files": list(self.used_files),
            "unused_files": [f.to_dict() for f in self.unused_files],
            "used_symbols": list(self.used_symbols),
            "unused_symbols": [s.to_dict() for s in self.unused_symbols],
        }


@dataclass(frozen=True)
class RiskRating:
    level: RiskLevel
    rationale: str


@dataclass
class RiskAssessment:
    """Ratings keyed by node id; kept apart from the AnalysisResult it rates."""

    ratings: Dict[str, RiskRating] = field(default_factory=dict)

    def for_file(self, item: UnusedFile) -> RiskRating:
        return self.ratings[item.node_id]

    def for_symbol(self, item: UnusedSymbol) -> RiskRating:
        return self.ratings[item.node_id]

    def breakdown(self, result: AnalysisResult) -> Dict[str, Dict[str, int]]:
        counts: Dict[str, Dict[str, int]] = {
            "files": {level.value: 0 for level in RiskLevel},
            "symbols": {level.value: 0 for level in RiskLevel},
        }
        for f in result.unused_files:
            counts["files"][self.for_file(f).level.value] += 1
        for s in result.unused_symbols:
            counts["symbols"][self.for_symbol(s).level.value] += 1
        return counts


@dataclass(frozen=True)
class Snapshot:
    """Write-once copy of the source tree taken before a destructive step."""

    snapshot_id: str
    path: str
    created_at: str
    origin_path: str
    purpose: str
    git_revision: Optional[str] = None
    file_count: int = 0

    @property
    def tree_path(self) -> str:
        return f"{self.path}/tree"

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "timestamp": self.created_at,
            "origin_path": self.origin_path,
            "purpose": self.purpose,
            "git_revision": self.git_revision,
            "file_count": self.file_count,
        }


@dataclass(frozen=True)
class DeletionRecord:
    kind: str  # "file" or "function"
    path: str
    snapshot_id: Optional[str]
    size_before: int
    size_after: int
    symbol: Optional[str] = None
    span: Optional[Tuple[int, int]] = None
    dry_run: bool = False
    timestamp: str = ""

    @property
    def bytes_freed(self) -> int:
        return self.size_before - self.size_after

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "path": self.path,
            "symbol": self.symbol,
            "snapshot_id": self.snapshot_id,
            "size_before": self.size_before,
            "size_after": self.size_after,
            "span": list(self.span) if self.span else None,
            "dry_run": self.dry_run,
            "timestamp": self.timestamp,
        }
