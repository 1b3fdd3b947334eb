"""Risk rating for deletion candidates.

Rules are evaluated in order and the first match wins:

1. manifest/config-role file                        -> high
2. symbol defined in more than one unit             -> medium
3. symbol name containing a protected substring     -> medium
4. symbol name also seen inside a string literal    -> medium
5. frontend template, or symbol living only in one  -> medium
6. backend unit larger than ``large_file_bytes``    -> medium
7. anything else                                    -> low
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Union

from . import config
from .config_manager import SweepSettings
from .models import (
    AnalysisResult,
    RiskAssessment,
    RiskLevel,
    RiskRating,
    UnitKind,
    UnusedFile,
    UnusedSymbol,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskPolicy:
    protected_substrings: List[str] = field(default_factory=lambda: list(config.DEFAULT_PROTECTED_SUBSTRINGS))
    config_files: List[str] = field(default_factory=lambda: list(config.DEFAULT_CONFIG_FILES))
    large_file_bytes: int = config.DEFAULT_LARGE_FILE_BYTES

    @classmethod
    def from_settings(cls, settings: SweepSettings) -> "RiskPolicy":
        return cls(
            protected_substrings=list(settings.protected_substrings),
            config_files=list(settings.config_files),
            large_file_bytes=settings.large_file_bytes,
        )


class RiskClassifier:
    """Pure function of (node, metadata); never touches the result it reads."""

    def __init__(self, policy: Optional[RiskPolicy] = None) -> None:
        self.policy = policy or RiskPolicy()

    def rate(self, item: Union[UnusedFile, UnusedSymbol]) -> RiskRating:
        if isinstance(item, UnusedFile):
            return self.rate_file(item)
        return self.rate_symbol(item)

    def rate_file(self, item: UnusedFile) -> RiskRating:
        file_name = item.path.rsplit("/", 1)[-1]
        if item.kind == UnitKind.CONFIG or file_name in self.policy.config_files:
            return RiskRating(RiskLevel.HIGH, "Configuration or manifest file")
        if item.kind == UnitKind.FRONTEND:
            return RiskRating(RiskLevel.MEDIUM, "Frontend template; may be loaded by name at runtime")
        if item.size > self.policy.large_file_bytes:
            return RiskRating(
                RiskLevel.MEDIUM,
                f"Large module ({item.size} bytes > {self.policy.large_file_bytes}); review contents",
            )
        return RiskRating(RiskLevel.LOW, "No references found")

    def rate_symbol(self, item: UnusedSymbol) -> RiskRating:
        if len(item.definitions) > 1:
            return RiskRating(
                RiskLevel.MEDIUM,
                f"Defined {len(item.definitions)} times ({', '.join(item.defined_in)}); ambiguous ownership",
            )
        lowered = item.name.lower()
        for fragment in self.policy.protected_substrings:
            if fragment.lower() in lowered:
                return RiskRating(RiskLevel.MEDIUM, f"Name contains protected fragment '{fragment}'")
        if item.mentioned_in_strings:
            return RiskRating(RiskLevel.MEDIUM, "Name appears in a string literal; possible dynamic dispatch")
        if item.unit_kinds and all(k == UnitKind.FRONTEND for k in item.unit_kinds.values()):
            return RiskRating(RiskLevel.MEDIUM, "Defined in a frontend template; may be bound from markup")
        return RiskRating(RiskLevel.LOW, "No references found")

    def assess(self, result: AnalysisResult) -> RiskAssessment:
        assessment = RiskAssessment()
        for f in result.unused_files:
            assessment.ratings[f.node_id] = self.rate_file(f)
        for s in result.unused_symbols:
            assessment.ratings[s.node_id] = self.rate_symbol(s)
        logger.debug("Risk breakdown: %s", assessment.breakdown(result))
        return assessment
