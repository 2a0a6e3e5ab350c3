"""Pre-merge impact analysis over the call graph.

Starting from the symbols a PR touches, walk their callers to find the
files and features at risk. Then look for changes whose reach crosses
feature or service boundaries, and lay out multi-level dependency chains.
Breakage predictions come from an optional external oracle and fall back
to deterministic rules.
"""

from __future__ import annotations

import logging
import math
from abc import ABC, abstractmethod
from collections import deque
from pathlib import PurePosixPath
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from . import config
from .indexer import CodebaseIndexer
from .models import (
    CALLABLE_KINDS,
    RISK_ORDER,
    BreakagePrediction,
    CallRelationship,
    CascadeFailure,
    CodeSymbol,
    DependencyChain,
    DependencyLink,
    ImpactAnalysis,
    ImpactedArea,
    ImpactedFeature,
)

logger = logging.getLogger(__name__)

IMPACT_KINDS = CALLABLE_KINDS + ("class",)
FEATURE_SUFFIXES = ("Service", "Controller", "Manager", "Handler")
FEATURE_DIR_STOPLIST = {"src", "com", "org"}
LEVEL2_REASON = "transitively depends on a level-1 file"
CRITICAL_CHAIN_LENGTH = 5


# ===================================================================
# Naming helpers
# ===================================================================

def _camel(text: str) -> str:
    parts = [p for p in text.replace("-", "_").split("_") if p]
    return "".join(p[:1].upper() + p[1:] for p in parts)


def infer_feature_name(filepath: str) -> str:
    """Business-feature name for a file.

    ``src/payment/PaymentService.java`` gives ``Payment``,
    ``billing/invoice_handler.py`` gives ``Invoice``,
    ``src/orders/utils.py`` gives ``Orders``.
    """
    path = PurePosixPath(filepath)
    stem = path.stem

    lowered = stem.lower()
    for suffix in FEATURE_SUFFIXES:
        if lowered.endswith(suffix.lower()):
            rest = stem[: len(stem) - len(suffix)].rstrip("_-")
            return _camel(rest) if rest else suffix

    parent = path.parent.name
    if parent and parent not in FEATURE_DIR_STOPLIST:
        return parent[:1].upper() + parent[1:]

    return stem or "Unknown"


def service_name(filepath: str) -> Optional[str]:
    """Filename stem when the path looks like a service, else ``None``."""
    if "service" not in filepath.lower():
        return None
    return PurePosixPath(filepath).stem


def risk_for(symbol: CodeSymbol) -> str:
    if symbol.visibility == "public":
        return "high"
    if symbol.visibility == "protected":
        return "medium"
    return "low"


def _max_risk(levels: Iterable[str]) -> str:
    return max(levels, key=lambda level: RISK_ORDER[level], default="low")


def _unique(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(items))


# ===================================================================
# Breakage oracle interface
# ===================================================================

class BreakageOracle(ABC):
    """External predictor, e.g. an LLM. ``None`` means "no answer"."""

    @abstractmethod
    def predict(
        self,
        changed: List[CodeSymbol],
        areas: List[ImpactedArea],
        features: List[ImpactedFeature],
    ) -> Optional[List[BreakagePrediction]]:
        ...


PredictionStrategy = Callable[
    [List[CodeSymbol], List[ImpactedArea], List[ImpactedFeature]],
    Optional[List[BreakagePrediction]],
]


def fallback_predictions(
    changed: List[CodeSymbol],
    areas: List[ImpactedArea],
    features: Optional[List[ImpactedFeature]] = None,
) -> List[BreakagePrediction]:
    """Deterministic rule-based predictions. Always answers."""
    predictions: List[BreakagePrediction] = []
    if not areas:
        return predictions
    files = _unique(area.file for area in areas)

    callables = [s for s in changed if s.kind in CALLABLE_KINDS]
    if callables:
        predictions.append(BreakagePrediction(
            scenario="Signature changes may break calling code",
            probability="high",
            impact=(
                f"{len(callables)} function(s) or method(s) have been modified. "
                f"{len(areas)} call site(s) may need updates to match new signatures."
            ),
            affected_files=files,
            mitigation=(
                "Review all call sites and update calls to match the new signatures. "
                "Run the full test suite before merging."
            ),
        ))

    restricted = [s for s in changed if s.visibility in ("private", "protected")]
    if restricted:
        predictions.append(BreakagePrediction(
            scenario="Visibility reduction may break external access",
            probability="medium",
            impact="Symbols may no longer be meant for use outside their module or class.",
            affected_files=files,
            mitigation=(
                "Verify every call site is in an allowed scope, or keep the symbol public."
            ),
        ))
    return predictions


# ===================================================================
# ImpactAnalyzer
# ===================================================================

class ImpactAnalyzer:
    """Computes the blast radius of a PR's changed symbols."""

    def __init__(
        self,
        indexer: CodebaseIndexer,
        oracle: Optional[BreakageOracle] = None,
        max_chain_depth: int = config.MAX_CHAIN_DEPTH,
    ) -> None:
        self.indexer = indexer
        self.oracle = oracle
        self.max_chain_depth = max_chain_depth

        self.prediction_strategies: List[PredictionStrategy] = []
        if oracle is not None:
            self.prediction_strategies.append(self._oracle_predictions)
        self.prediction_strategies.append(fallback_predictions)

    def analyze_impact(
        self,
        pr_symbols: List[CodeSymbol],
        pr_files: Optional[Sequence[str]] = None,
    ) -> ImpactAnalysis:
        skip_files: Set[str] = set(pr_files or [])
        changed = [s for s in pr_symbols if s.kind in IMPACT_KINDS]

        areas_by_symbol: Dict[int, List[ImpactedArea]] = {}
        all_areas: List[ImpactedArea] = []
        for idx, symbol in enumerate(changed):
            areas = [
                self._area(symbol, site)
                for site in self.indexer.find_callers(symbol.name)
                if site.file not in skip_files
            ]
            areas_by_symbol[idx] = areas
            all_areas.extend(areas)

        features = self._group_features(all_areas)

        cascades: List[CascadeFailure] = []
        chains: List[DependencyChain] = []
        for idx, symbol in enumerate(changed):
            areas = areas_by_symbol[idx]
            if not areas:
                continue
            cascade = self.detect_cascade(symbol, areas)
            if cascade is not None:
                cascades.append(cascade)
            chains.append(self.build_dependency_chain(symbol, areas, skip_files))

        return ImpactAnalysis(
            changed_symbols=changed,
            impacted_files=_unique(area.file for area in all_areas),
            impacted_features=features,
            call_sites=[area.call_site for area in all_areas],
            cascade_failures=cascades,
            dependency_chains=chains,
            breakage_predictions=self.predict_breakage(changed, all_areas, features),
        )

    # ------------------------------------------------------------------
    # Areas and features
    # ------------------------------------------------------------------

    @staticmethod
    def _area(symbol: CodeSymbol, site: CallRelationship) -> ImpactedArea:
        if symbol.visibility == "public":
            reason = f"Public {symbol.kind} {symbol.name} is called from {site.caller}() in {site.file}"
        elif symbol.visibility == "protected":
            reason = f"Protected {symbol.kind} {symbol.name} is called from {site.caller}() in {site.file}"
        else:
            reason = f"{symbol.kind.capitalize()} {symbol.name} is referenced in {site.file}"
        return ImpactedArea(
            file=site.file,
            line=site.line,
            method=site.caller,
            feature=infer_feature_name(site.file),
            call_site=site,
            risk_level=risk_for(symbol),  # type: ignore[arg-type]
            reason=reason,
        )

    @staticmethod
    def _group_features(areas: List[ImpactedArea]) -> List[ImpactedFeature]:
        grouped: Dict[str, List[ImpactedArea]] = {}
        for area in areas:
            grouped.setdefault(area.feature or "Unknown", []).append(area)

        features: List[ImpactedFeature] = []
        for name, members in grouped.items():
            features.append(ImpactedFeature(
                name=name,
                files=_unique(a.file for a in members),
                impacted_areas=members,
                risk_level=_max_risk(a.risk_level for a in members),  # type: ignore[arg-type]
                description=(
                    f"The {name} feature uses code that is being modified in this PR. "
                    f"Changes may affect functionality in {members[0].file}."
                ),
            ))
        return features

    # ------------------------------------------------------------------
    # Cascades
    # ------------------------------------------------------------------

    @staticmethod
    def detect_cascade(symbol: CodeSymbol, areas: List[ImpactedArea]) -> Optional[CascadeFailure]:
        """A cascade is a change reaching more than one feature or service."""
        features = _unique(area.feature for area in areas)
        services = _unique(
            name for name in (service_name(area.file) for area in areas) if name
        )
        if len(features) <= 1 and len(services) <= 1:
            return None

        indirect = sum(1 for area in areas if area.file != symbol.file)
        chain_length = 1 + math.ceil(indirect / 3)
        if chain_length > 3:
            severity = "high"
        elif chain_length > 2:
            severity = "medium"
        else:
            severity = "low"

        return CascadeFailure(
            trigger=symbol.name,
            affected_features=features,
            affected_services=services,
            chain_length=chain_length,
            severity=severity,  # type: ignore[arg-type]
            description=(
                f"Changing {symbol.name} reaches {len(features)} feature(s) "
                f"and {len(services)} service(s) through {len(areas)} call site(s)."
            ),
        )

    # ------------------------------------------------------------------
    # Dependency chains
    # ------------------------------------------------------------------

    def build_dependency_chain(
        self,
        symbol: CodeSymbol,
        areas: List[ImpactedArea],
        skip_files: Optional[Set[str]] = None,
    ) -> DependencyChain:
        skip_files = skip_files or set()
        chain: List[DependencyLink] = []
        seen_links: Set[tuple] = set()

        for area in areas:
            if area.file == symbol.file or symbol.name in area.method:
                key = (area.file, area.method)
                if key in seen_links:
                    continue
                seen_links.add(key)
                chain.append(DependencyLink(
                    level=1, file=area.file, symbol=area.method,
                    reason=f"directly calls {symbol.name}",
                ))

        covered = {link.file for link in chain}
        for area in areas:
            if area.file in covered:
                continue
            covered.add(area.file)
            chain.append(DependencyLink(
                level=2, file=area.file, symbol=area.method, reason=LEVEL2_REASON,
            ))

        self._extend_chain(chain, skip_files, symbol.name)

        name = symbol.name.lower()
        return DependencyChain(
            root_change=symbol.name,
            chain=chain,
            total_affected=len(chain),
            critical_path=len(chain) > CRITICAL_CHAIN_LENGTH or "service" in name or "api" in name,
        )

    def _extend_chain(self, chain: List[DependencyLink], skip_files: Set[str], root: str) -> None:
        """Breadth-first walk over callers for levels 3 and deeper."""
        if self.max_chain_depth < 3:
            return
        files = {link.file for link in chain}
        visited: Set[str] = {root} | {link.symbol for link in chain}
        queue = deque((link.symbol, 2) for link in chain)

        while queue:
            current, level = queue.popleft()
            if level >= self.max_chain_depth:
                continue
            for site in self.indexer.find_callers(current):
                if site.caller in visited:
                    continue
                visited.add(site.caller)
                queue.append((site.caller, level + 1))
                if site.file in files or site.file in skip_files:
                    continue
                files.add(site.file)
                chain.append(DependencyLink(
                    level=level + 1, file=site.file, symbol=site.caller,
                    reason=f"calls {current}",
                ))

    # ------------------------------------------------------------------
    # Predictions
    # ------------------------------------------------------------------

    def predict_breakage(
        self,
        changed: List[CodeSymbol],
        areas: List[ImpactedArea],
        features: List[ImpactedFeature],
    ) -> List[BreakagePrediction]:
        for strategy in self.prediction_strategies:
            result = strategy(changed, areas, features)
            if result is not None:
                return result
        return []

    def _oracle_predictions(
        self,
        changed: List[CodeSymbol],
        areas: List[ImpactedArea],
        features: List[ImpactedFeature],
    ) -> Optional[List[BreakagePrediction]]:
        if self.oracle is None or not changed:
            return None
        try:
            return self.oracle.predict(changed, areas, features)
        except Exception as exc:
            logger.warning("Breakage oracle failed, using local rules: %s", exc)
            return None


# ===================================================================
# Reporting
# ===================================================================

def summarize_impact(analysis: ImpactAnalysis, max_sites: int = 10) -> str:
    """Markdown summary of an :class:`ImpactAnalysis`."""
    out: List[str] = ["# Pre-Merge Impact Analysis", "", "## Overview", ""]
    out.append(
        f"This PR modifies **{len(analysis.changed_symbols)} symbol(s)** that are used "
        f"by **{len(analysis.impacted_files)} file(s)** in the codebase."
    )
    out.append("")

    if analysis.impacted_features:
        out += ["## Impacted Features", ""]
        for feature in analysis.impacted_features:
            out.append(f"### {feature.name}")
            out.append(f"- **Risk Level:** {feature.risk_level.upper()}")
            out.append(f"- **Affected Files:** {len(feature.files)}")
            out.append(f"- **Call Sites:** {len(feature.impacted_areas)}")
            out.append(f"- **Description:** {feature.description}")
            out.append("")
            for area in feature.impacted_areas[:max_sites]:
                out.append(f"  - `{area.method}()` in `{area.file}:{area.line}`")
            extra = len(feature.impacted_areas) - max_sites
            if extra > 0:
                out.append(f"  ... and {extra} more call site(s)")
            out.append("")

    if analysis.cascade_failures:
        out += ["## Cascade Risks", ""]
        for cascade in analysis.cascade_failures:
            out.append(f"- **{cascade.trigger}** ({cascade.severity.upper()}): {cascade.description}")
        out.append("")

    if analysis.breakage_predictions:
        out += ["## Potential Breakage Scenarios", ""]
        for prediction in analysis.breakage_predictions:
            out.append(f"### {prediction.scenario}")
            out.append(f"- **Probability:** {prediction.probability.upper()}")
            out.append(f"- **Impact:** {prediction.impact}")
            out.append(f"- **Affected Files:** {len(prediction.affected_files)}")
            out.append(f"- **Mitigation:** {prediction.mitigation}")
            out.append("")

    return "\n".join(out).rstrip() + "\n"
