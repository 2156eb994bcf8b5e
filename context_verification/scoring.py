"""Alignment scoring: (item, truth) -> AlignmentResult.

Four independent sub-scorers each return 0-100, higher meaning better
aligned. They combine into ``confidence`` through configurable weights, the
thresholds map confidence to a status, and finally the NOT THIS boundary
override forces ``blocked`` regardless of confidence.

Sub-scorers are pluggable: anything with a ``score(item, truth)`` method
can replace the keyword heuristics below (see ``ai_scorer``).
"""

from __future__ import annotations

import math
from typing import AbstractSet, Callable, Dict, Iterable, List, Optional, Set, Tuple

from .config import SUB_SCORE_NAMES, ScoringConfig
from .models import AlignmentResult, AlignmentStatus, ProjectTruth, ScorableItem
from .text import (
    contains_phrase,
    core_terms,
    extract_keywords,
    similarity,
    term_hits,
    words,
)


def clamp(value: float) -> int:
    return int(max(0, min(100, round(value))))


class SubScorer:
    """One named alignment factor."""

    name = ""

    def score(self, item: ScorableItem, truth: ProjectTruth) -> int:
        raise NotImplementedError


# ============================================================================
# DOMAIN ALIGNMENT
# ============================================================================

def domain_vocabulary(truth: ProjectTruth) -> Set[str]:
    """Industry keywords, domain terms and vision keywords."""
    vocabulary = set(extract_keywords(truth.industry))
    vocabulary.update(t.term.lower() for t in truth.domain_terms if t.term.strip())
    vocabulary.update(extract_keywords(truth.what_were_building))
    return vocabulary


class KeywordDomainScorer(SubScorer):
    """Overlap between the item text and the project's domain vocabulary."""

    name = "domain_alignment"

    def score(self, item: ScorableItem, truth: ProjectTruth) -> int:
        vocabulary = domain_vocabulary(truth)
        if not vocabulary:
            return 75
        hits = term_hits(item.text, vocabulary)
        if not hits:
            return 40
        return clamp(70 + 15 * len(hits))


# ============================================================================
# USER ALIGNMENT
# ============================================================================

class KeywordUserScorer(SubScorer):
    """Relevance of the item to the target users."""

    name = "user_alignment"

    def score(self, item: ScorableItem, truth: ProjectTruth) -> int:
        tokens = set(words(item.text))
        primary = extract_keywords(truth.target_users.primary)
        secondary = extract_keywords(truth.target_users.secondary)
        if primary & tokens:
            return 100
        if secondary & tokens:
            return 80
        return 60


# ============================================================================
# COMPETITOR FEATURE
# ============================================================================

def competitor_only_keywords(truth: ProjectTruth) -> Set[str]:
    """Capabilities competitors advertise that the truth does not claim."""
    differentiators = domain_vocabulary(truth)
    for term in truth.domain_terms:
        differentiators.update(extract_keywords(term.definition))
    capabilities: Set[str] = set()
    for competitor in truth.competitors:
        capabilities.update(extract_keywords(competitor.description))
    return capabilities - differentiators


class CompetitorFeatureScorer(SubScorer):
    """Penalizes items that copy competitor-only capabilities."""

    name = "competitor_feature"

    def score(self, item: ScorableItem, truth: ProjectTruth) -> int:
        for competitor in truth.competitors:
            if competitor.name and contains_phrase(item.text, competitor.name):
                return 30
        hits = extract_keywords(item.text) & competitor_only_keywords(truth)
        if not hits:
            return 100
        if len(hits) == 1:
            return 70
        return 40


# ============================================================================
# HISTORICAL PATTERN
# ============================================================================

# (item_id, text, truth_version) for each previously flagged result.
PatternSource = Callable[[], Iterable[Tuple[str, str, int]]]


class HistoricalPatternScorer(SubScorer):
    """Similarity to previously flagged violations.

    Only flags recorded against the truth version being scored count. Flags
    of the item itself, or of any other item in the batch being scored, are
    ignored, so re-verifying an unchanged backlog gives the same result.
    """

    name = "historical_pattern"

    def __init__(self, patterns: Optional[PatternSource] = None, threshold: float = 0.6):
        self._patterns = patterns or (lambda: ())
        self.threshold = threshold

    def similar_patterns(self, item: ScorableItem, truth_version: int,
                         batch_ids: AbstractSet[str] = frozenset()) -> List[str]:
        keywords = extract_keywords(item.text)
        return [
            text for item_id, text, version in self._patterns()
            if version == truth_version
            and item_id != item.id and item_id not in batch_ids
            and similarity(keywords, extract_keywords(text)) >= self.threshold
        ]

    def score(self, item: ScorableItem, truth: ProjectTruth,
              batch_ids: AbstractSet[str] = frozenset()) -> int:
        matches = len(self.similar_patterns(item, truth.version, batch_ids))
        if matches == 0:
            return 100
        return max(10, 70 - 15 * (matches - 1))


# ============================================================================
# BOUNDARY OVERRIDE
# ============================================================================

def find_boundary_violation(text: str, not_this: Iterable[str]) -> Optional[str]:
    """Return the first NOT THIS boundary the text crosses, if any.

    A boundary matches on its literal phrase, or when at least half of its
    core terms (negations, stop words and generic product nouns removed)
    appear as words of the text.
    """
    tokens = set(words(text))
    for boundary in not_this:
        if contains_phrase(text, boundary):
            return boundary
        terms = core_terms(boundary)
        if not terms:
            continue
        hits = sum(1 for t in terms if t in tokens)
        if hits >= math.ceil(len(terms) / 2):
            return boundary
    return None


# ============================================================================
# SCORER
# ============================================================================

_REASONS = {
    "domain_alignment": {
        "high": "Item contains terms explicitly outside project domain",
        "medium": "Item lacks domain-specific terminology",
        "low": "Item aligns well with project domain",
    },
    "user_alignment": {
        "high": "Item does not benefit target users",
        "medium": "Unclear how item benefits target users",
        "low": "Item clearly benefits target users",
    },
    "competitor_feature": {
        "high": "Item copies a competitor-only capability",
        "medium": "Item resembles competitor features outside our differentiators",
        "low": "No competitor overlap",
    },
    "historical_pattern": {
        "high": "Similar items caused context drift before",
        "medium": "Pattern resembles past violations",
        "low": "No concerning historical patterns",
    },
}

_RECOMMENDATIONS = {
    AlignmentStatus.WARNING: "Consider clarifying alignment with project goals",
    AlignmentStatus.REVIEW: "Review with Project Manager for alignment",
    AlignmentStatus.BLOCKED: "This item does not align with project goals; revise or remove it",
}


def reason_for(factor: str, sub_score: int) -> str:
    if sub_score < 50:
        level = "high"
    elif sub_score < 80:
        level = "medium"
    else:
        level = "low"
    return _REASONS.get(factor, {}).get(level, f"{factor} scored {sub_score}")


def default_sub_scorers(patterns: Optional[PatternSource] = None,
                        config: Optional[ScoringConfig] = None) -> Dict[str, SubScorer]:
    config = config or ScoringConfig()
    return {
        "domain_alignment": KeywordDomainScorer(),
        "user_alignment": KeywordUserScorer(),
        "competitor_feature": CompetitorFeatureScorer(),
        "historical_pattern": HistoricalPatternScorer(patterns, config.pattern_similarity),
    }


class AlignmentScorer:
    """Pure, stateless scoring of items against a truth snapshot."""

    def __init__(self, config: Optional[ScoringConfig] = None,
                 sub_scorers: Optional[Dict[str, SubScorer]] = None):
        self.config = config or ScoringConfig()
        scorers = default_sub_scorers(config=self.config)
        scorers.update(sub_scorers or {})
        missing = set(SUB_SCORE_NAMES) - set(scorers)
        if missing:
            raise ValueError(f"Missing sub-scorers: {sorted(missing)}")
        self.sub_scorers = {name: scorers[name] for name in SUB_SCORE_NAMES}

    def classify(self, confidence: int) -> AlignmentStatus:
        if confidence >= self.config.allowed_threshold:
            return AlignmentStatus.ALLOWED
        if confidence >= self.config.warning_threshold:
            return AlignmentStatus.WARNING
        if confidence >= self.config.review_threshold:
            return AlignmentStatus.REVIEW
        return AlignmentStatus.BLOCKED

    def score(self, item: ScorableItem, truth: ProjectTruth,
              batch_ids: AbstractSet[str] = frozenset()) -> AlignmentResult:
        """Score one item. ``batch_ids`` are the ids verified alongside it."""
        details = {}
        for name, scorer in self.sub_scorers.items():
            if isinstance(scorer, HistoricalPatternScorer):
                value = scorer.score(item, truth, batch_ids)
            else:
                value = scorer.score(item, truth)
            details[name] = clamp(value)
        weights = self.config.normalized_weights()
        confidence = clamp(sum(weights[name] * details[name] for name in SUB_SCORE_NAMES))

        status = self.classify(confidence)
        # Weakest weighted factor explains the score; ties keep declaration order.
        primary_factor = min(
            (name for name in SUB_SCORE_NAMES if weights[name] > 0),
            key=lambda name: details[name],
        )
        reason = reason_for(primary_factor, details[primary_factor])

        boundary = find_boundary_violation(item.text, truth.not_this)
        if boundary is not None:
            status = AlignmentStatus.BLOCKED
            primary_factor = "not_this"
            message = f"Context violation detected: item crosses boundary \"{boundary}\""
        elif status == AlignmentStatus.ALLOWED:
            message = "Item aligns with project context"
        elif status == AlignmentStatus.WARNING:
            message = f"Minor concern: {reason}"
        elif status == AlignmentStatus.REVIEW:
            message = f"Possible context drift: {reason}"
        else:
            message = f"Context violation detected: {reason}"

        return AlignmentResult(
            id=item.id,
            title=item.title,
            category=item.category,
            status=status,
            confidence=confidence,
            message=message,
            recommendation=_RECOMMENDATIONS.get(status),
            details=details,
            primary_factor=primary_factor,
            boundary_violation=boundary,
            truth_version=truth.version,
        )
