"""
Module 6: Cross-Document Stability Analyzer.
Paragraph position k of every document in a batch is compared across documents:
n-grams present in most documents are boilerplate (stable), n-grams present in few
are case-specific content (variable).
Feed it only after every document's paragraphs are built; the counters are batch-global.
"""

import logging
import math
from collections import Counter
from typing import Dict, Iterable, List, Sequence, Tuple

from .config import PipelineConfig
from .types import NgramStat, Paragraph, ParagraphStability

logger = logging.getLogger(__name__)


def ngrams(tokens: Sequence[str], n: int) -> List[str]:
    if len(tokens) < n:
        return []
    return [" ".join(tokens[i:i + n]) for i in range(len(tokens) - n + 1)]


class _PositionCounters:
    """Document and term frequencies for one paragraph position."""

    def __init__(self) -> None:
        self.docs = 0
        self.df: Dict[int, Counter] = {2: Counter(), 3: Counter()}
        self.tf: Dict[int, Counter] = {2: Counter(), 3: Counter()}

    def add(self, tokens: Sequence[str]) -> None:
        self.docs += 1
        for n in (2, 3):
            grams = ngrams(tokens, n)
            self.tf[n].update(grams)
            self.df[n].update(set(grams))


class StabilityAnalyzer:
    """Accumulates paragraph n-gram statistics over a batch of documents."""

    def __init__(self, config: PipelineConfig) -> None:
        self.config = config
        self._positions: List[_PositionCounters] = []
        self.documents = 0

    def add_document(self, paragraphs: Sequence[Paragraph]) -> None:
        """Paragraphs of one document in reading order; position k is the k-th paragraph."""
        self.documents += 1
        for idx, paragraph in enumerate(paragraphs):
            while len(self._positions) <= idx:
                self._positions.append(_PositionCounters())
            self._positions[idx].add(paragraph.tokens)

    def report(self) -> List[ParagraphStability]:
        out = []
        for idx, counters in enumerate(self._positions):
            stable_min = math.ceil(counters.docs * self.config.stable_df_ratio)
            variable_max = math.floor(counters.docs * self.config.variable_df_ratio)
            stable: Dict[int, List[NgramStat]] = {}
            variable: Dict[int, List[NgramStat]] = {}
            for n in (2, 3):
                stable[n], variable[n] = self._split(counters.df[n], counters.tf[n], stable_min, variable_max)
            out.append(
                ParagraphStability(
                    paragraph=idx + 1,
                    docs_with_par=counters.docs,
                    stable_bigrams=stable[2],
                    stable_trigrams=stable[3],
                    variable_bigrams=variable[2],
                    variable_trigrams=variable[3],
                )
            )
        logger.info("Stability report: %d documents, %d paragraph positions", self.documents, len(out))
        return out

    def _split(
        self,
        df: Counter,
        tf: Counter,
        stable_min: int,
        variable_max: int,
    ) -> Tuple[List[NgramStat], List[NgramStat]]:
        k = self.config.stability_top_k
        stable_keys = sorted(
            (g for g, d in df.items() if d >= stable_min),
            key=lambda g: (-df[g], -tf[g], g),
        )[:k]
        variable_keys = sorted(
            (g for g, d in df.items() if d <= variable_max),
            key=lambda g: (df[g], -tf[g], g),
        )[:k]
        return (
            [NgramStat(g, df[g], tf[g]) for g in stable_keys],
            [NgramStat(g, df[g], tf[g]) for g in variable_keys],
        )


def analyze_stability(
    documents: Iterable[Sequence[Paragraph]],
    config: PipelineConfig,
) -> List[ParagraphStability]:
    analyzer = StabilityAnalyzer(config)
    for paragraphs in documents:
        analyzer.add_document(paragraphs)
    return analyzer.report()


def stability_to_dict(report: Sequence[ParagraphStability]) -> List[dict]:
    return [
        {
            "paragraph": p.paragraph,
            "docs_with_par": p.docs_with_par,
            "stable_bigrams": [s.to_dict() for s in p.stable_bigrams],
            "stable_trigrams": [s.to_dict() for s in p.stable_trigrams],
            "variable_bigrams": [s.to_dict() for s in p.variable_bigrams],
            "variable_trigrams": [s.to_dict() for s in p.variable_trigrams],
        }
        for p in report
    ]
