"""Suggest which column feeds which field from the header text."""

import logging
from collections.abc import Iterable, Sequence

from app.importer.similarity import CharacterOverlapScorer, SimilarityScorer
from app.importer.types import ColumnMapping, FieldDescriptor

logger = logging.getLogger(__name__)

EXACT_SCORE = 100
HEADER_CONTAINS_SCORE = 80
PATTERN_CONTAINS_SCORE = 60
SIMILAR_SCORE = 50

MIN_SCORE = SIMILAR_SCORE
SIMILARITY_THRESHOLD = 0.7


def score_header(
    header: str, pattern: str, scorer: SimilarityScorer | None = None
) -> int:
    """Score how well a header matches one field pattern (0 when it does not)."""
    header = header.strip().lower()
    pattern = pattern.strip().lower()
    if not header or not pattern:
        return 0
    if header == pattern:
        return EXACT_SCORE
    if pattern in header:
        return HEADER_CONTAINS_SCORE
    if header in pattern and len(header) > 2:
        return PATTERN_CONTAINS_SCORE
    scorer = scorer or CharacterOverlapScorer()
    if scorer.similarity(header, pattern) > SIMILARITY_THRESHOLD:
        return SIMILAR_SCORE
    return 0


def best_column(
    headers: Sequence[str],
    descriptor: FieldDescriptor,
    scorer: SimilarityScorer | None = None,
) -> tuple[int | None, int]:
    """Find the best scoring column for a field.

    Returns:
        ``(column index, score)``; the index is None when nothing scores high enough.
        On equal scores the leftmost header wins.
    """
    best_index = None
    best_score = 0
    for index, header in enumerate(headers):
        if not header:
            continue
        for pattern in descriptor.patterns:
            score = score_header(header, pattern, scorer)
            if score > best_score:
                best_score = score
                best_index = index
    if best_score < MIN_SCORE:
        return None, 0
    return best_index, best_score


def match_fields(
    headers: Sequence[str],
    descriptors: Iterable[FieldDescriptor],
    mapping: ColumnMapping,
    scorer: SimilarityScorer | None = None,
) -> set[str]:
    """Fill unmapped fields in ``mapping`` from the headers.

    Fields the user already mapped are left alone.

    Returns:
        Keys of the fields this call mapped, for "auto matched" hints
    """
    scorer = scorer or CharacterOverlapScorer()
    matched: set[str] = set()
    for descriptor in descriptors:
        if mapping.is_mapped(descriptor.key):
            continue
        index, score = best_column(headers, descriptor, scorer)
        if index is None:
            continue
        mapping.assign(descriptor.key, index)
        matched.add(descriptor.key)
        logger.debug(f"Auto-matched field {descriptor.key} to column {index} ({headers[index]!r}, score {score})")
    return matched
