"""Core data models shared by indexing, analysis and reporting layers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Literal, Optional

SymbolKind = Literal[
    "function", "class", "method", "constructor",
    "variable", "interface", "enum", "field",
]
Visibility = Literal["public", "private", "protected", "package"]
ChangeType = Literal["signature", "removed", "visibility", "return_type"]
Severity = Literal["high", "medium", "low"]
RiskLevel = Literal["high", "medium", "low"]
DuplicateType = Literal["exact", "similar", "pattern"]

RISK_ORDER: Dict[str, int] = {"low": 0, "medium": 1, "high": 2}

# Constructors share the bare name `__init__` across classes, so name lookups
# cannot tell them apart. Change analysis only follows these kinds.
CALLABLE_KINDS = ("method", "function")


# ===================================================================
# Index
# ===================================================================

@dataclass
class Parameter:
    name: str
    type: str = ""
    optional: bool = False


@dataclass
class CodeSymbol:
    name: str
    kind: SymbolKind
    file: str
    start_line: int
    end_line: int
    signature: Optional[str] = None
    parameters: List[Parameter] = field(default_factory=list)
    return_type: Optional[str] = None
    visibility: Optional[Visibility] = None
    is_static: bool = False
    is_constant: bool = False
    extends: Optional[str] = None
    implements: List[str] = field(default_factory=list)
    code: Optional[str] = None

    @property
    def location(self) -> str:
        return f"{self.file}:{self.start_line}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "CodeSymbol":
        data = dict(payload)
        data["parameters"] = [Parameter(**p) for p in data.get("parameters") or []]
        data["implements"] = list(data.get("implements") or [])
        return cls(**data)


@dataclass
class CallRelationship:
    caller: str
    callee: str
    file: str
    line: int


@dataclass
class CodeIndex:
    """Mutable index structure.

    ``symbol_map`` is keyed by bare name, so a later symbol with the same
    name replaces an earlier one. ``symbols`` and ``file_map`` keep all of
    them.
    """

    symbols: List[CodeSymbol] = field(default_factory=list)
    call_graph: List[CallRelationship] = field(default_factory=list)
    file_map: Dict[str, List[CodeSymbol]] = field(default_factory=dict)
    symbol_map: Dict[str, CodeSymbol] = field(default_factory=dict)


# ===================================================================
# Analysis results
# ===================================================================

@dataclass
class BreakingChange:
    symbol: CodeSymbol
    change_type: ChangeType
    old_signature: Optional[str]
    new_signature: Optional[str]
    impacted_files: List[str]
    call_sites: List[CallRelationship]
    severity: Severity
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ImpactedArea:
    file: str
    line: int
    method: str
    feature: str
    call_site: CallRelationship
    risk_level: RiskLevel
    reason: str


@dataclass
class ImpactedFeature:
    name: str
    files: List[str]
    impacted_areas: List[ImpactedArea]
    risk_level: RiskLevel
    description: str


@dataclass
class CascadeFailure:
    trigger: str
    affected_features: List[str]
    affected_services: List[str]
    chain_length: int
    severity: Severity
    description: str


@dataclass
class DependencyLink:
    level: int
    file: str
    symbol: str
    reason: str


@dataclass
class DependencyChain:
    root_change: str
    chain: List[DependencyLink]
    total_affected: int
    critical_path: bool


@dataclass
class BreakagePrediction:
    scenario: str
    probability: Severity
    impact: str
    affected_files: List[str] = field(default_factory=list)
    mitigation: str = ""


@dataclass
class ImpactAnalysis:
    changed_symbols: List[CodeSymbol] = field(default_factory=list)
    impacted_files: List[str] = field(default_factory=list)
    impacted_features: List[ImpactedFeature] = field(default_factory=list)
    call_sites: List[CallRelationship] = field(default_factory=list)
    cascade_failures: List[CascadeFailure] = field(default_factory=list)
    dependency_chains: List[DependencyChain] = field(default_factory=list)
    breakage_predictions: List[BreakagePrediction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DuplicateMatch:
    symbol1: CodeSymbol
    symbol2: CodeSymbol
    similarity: float
    type: DuplicateType
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EmbeddingMetadata:
    file: str
    symbol_type: str
    timestamp: float


@dataclass
class Embedding:
    symbol: CodeSymbol
    vector: List[float]
    metadata: EmbeddingMetadata


# ===================================================================
# Indexing / review plumbing
# ===================================================================

@dataclass
class IndexingProgress:
    total_files: int = 0
    processed_files: int = 0
    indexed_symbols: int = 0
    generated_embeddings: int = 0
    errors: int = 0
    failed_files: List[str] = field(default_factory=list)


@dataclass
class PRFile:
    filename: str
    patch: Optional[str] = None
    content: Optional[str] = None
    status: str = "modified"


@dataclass
class ReviewComment:
    path: str
    line: int
    body: str
    severity: Severity
    category: str


@dataclass
class ReviewReport:
    breaking_changes: List[BreakingChange] = field(default_factory=list)
    duplicates_within_pr: List[DuplicateMatch] = field(default_factory=list)
    duplicates_cross_repo: List[DuplicateMatch] = field(default_factory=list)
    impact: ImpactAnalysis = field(default_factory=ImpactAnalysis)
    comments: List[ReviewComment] = field(default_factory=list)
    unanchored_findings: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
