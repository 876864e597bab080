"""Category affinity between a task and each runner's completed-task history.

Scores are TF-IDF cosine similarities. The IDF table is built from the
histories of the runners in the current pool only, so the same runner can
score differently against a different pool.
"""

import math
from collections import Counter
from typing import Iterable, Mapping

from runnergate.models.task import category_tokens

# Weight for a term every document in the pool contains
SHARED_TERM_IDF = 0.1


def normalize_tokens(labels: Iterable[str]) -> list[str]:
    """Flatten labels (possibly comma-separated) into lower-cased tokens."""
    tokens: list[str] = []
    for label in labels:
        tokens.extend(category_tokens(label))
    return tokens


def term_frequencies(tokens: list[str]) -> dict[str, float]:
    if not tokens:
        return {}
    total = len(tokens)
    return {term: count / total for term, count in Counter(tokens).items()}


def _cosine(a: Mapping[str, float], b: Mapping[str, float]) -> float:
    dot = sum(weight * b.get(term, 0.0) for term, weight in a.items())
    norm_a = math.sqrt(sum(w * w for w in a.values()))
    norm_b = math.sqrt(sum(w * w for w in b.values()))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class AffinityScorer:
    """TF-IDF model fitted to one ranking pass's pool of runner histories."""

    def __init__(self, histories: Mapping[str, list[str]]):
        self._documents = {
            runner_id: normalize_tokens(labels) for runner_id, labels in histories.items()
        }
        self.idf = self._inverse_document_frequencies()

    def _inverse_document_frequencies(self) -> dict[str, float]:
        n_docs = len(self._documents)
        doc_freq: Counter[str] = Counter()
        for tokens in self._documents.values():
            doc_freq.update(set(tokens))

        idf: dict[str, float] = {}
        for term, df in doc_freq.items():
            if df == n_docs:
                idf[term] = SHARED_TERM_IDF
            else:
                idf[term] = math.log(n_docs / df)
        return idf

    def term_idf(self, term: str) -> float:
        """IDF of a term; terms no pool document contains weigh 0."""
        return self.idf.get(term, 0.0)

    def _vector(self, tokens: list[str]) -> dict[str, float]:
        return {term: tf * self.term_idf(term) for term, tf in term_frequencies(tokens).items()}

    def score(self, runner_id: str, task_tokens: Iterable[str]) -> float:
        """Similarity of a runner's history to the task, clamped to [0, 1]."""
        history = self._documents.get(runner_id) or []
        query = normalize_tokens(task_tokens)
        if not history or not query:
            return 0.0

        similarity = _cosine(self._vector(query), self._vector(history))
        return min(1.0, max(0.0, similarity))

    def score_all(self, task_tokens: Iterable[str]) -> dict[str, float]:
        query = list(task_tokens)
        return {runner_id: self.score(runner_id, query) for runner_id in self._documents}
