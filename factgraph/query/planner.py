"""
Hybrid query planner for factgraph.

Answers natural-language questions by merging two candidate sets:

- Vector candidates: the top-N active facts most similar to the question
- Graph candidates: facts within a bounded traversal of the seed entities

Scoring:
    score = (w_v * max(0, cosine) + w_g * 1 / (hops + 1)) / (w_v + w_g)

    Facts not reached by the traversal have no graph component; facts not
    returned by the vector search still get their cosine similarity looked
    up in the index. Candidates scoring zero are dropped.

Consistency:
    A query captures one graph state at entry and ranks only facts active
    in it. Before returning it re-checks the coordinator's history, and any
    candidate unlearned since the captured version is withheld and listed
    in ``Answer.dropped_fact_ids``.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from factgraph.core.models import Fact
from factgraph.errors import UnknownEntity
from factgraph.query.results import Answer, Provenance, QueryFilters, RankedResult
from factgraph.runtime.cancellation import CancellationToken
from factgraph.runtime.coordinator import ConsistencyCoordinator
from factgraph.storage.engine import GraphState


logger = logging.getLogger(__name__)


class _Candidate:
    __slots__ = ("fact", "cosine", "hops")

    def __init__(self, fact: Fact):
        self.fact = fact
        self.cosine: Optional[float] = None
        self.hops: Optional[int] = None


class HybridQueryPlanner:
    """
    Vector search plus graph traversal, merged into one ranking.

    Usage:
        ```python
        planner = HybridQueryPlanner(coordinator)
        answer = planner.answer(
            "what does billing depend on",
            QueryFilters(entities=["billing"]),
            timeout=2.0,
        )
        for result in answer.results:
            print(result.fact.predicate, result.object, result.score)
        ```
    """

    def __init__(
        self,
        coordinator: ConsistencyCoordinator,
        *,
        vector_top_n: int = 50,
        top_k: int = 10,
        vector_weight: float = 0.7,
        graph_weight: float = 0.3,
        graph_depth: int = 2,
        query_timeout: Optional[float] = 10.0,
        workers: int = 4,
    ):
        if vector_weight < 0 or graph_weight < 0 or vector_weight + graph_weight <= 0:
            raise ValueError("weights must be non-negative with a positive sum")
        self._coordinator = coordinator
        self._vector_top_n = vector_top_n
        self._top_k = top_k
        self._vector_weight = vector_weight
        self._graph_weight = graph_weight
        self._graph_depth = graph_depth
        self._query_timeout = query_timeout
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="factgraph-query")

    def answer(
        self,
        text: str,
        filters: Optional[QueryFilters] = None,
        timeout: Optional[float] = None,
        token: Optional[CancellationToken] = None,
    ) -> Answer:
        """
        Answer a question against the current graph version.

        Args:
            text: Question text
            filters: Seeds and restrictions
            timeout: Seconds allowed (defaults to the planner's query timeout)
            token: Caller-held token for cancelling from another thread

        Raises:
            QueryTimeout: If the deadline passed before the answer was ready
            QueryCancelled: If the caller cancelled
        """
        filters = filters or QueryFilters()
        if token is None:
            token = CancellationToken(self._query_timeout if timeout is None else timeout)
        token.check()

        view = self._coordinator.view()
        candidates: dict[str, _Candidate] = {}

        # 1. Embed the question
        embedder = self._coordinator.embedder
        vector = token.wait_for(self._executor.submit(embedder.embed, text))
        usable_vector = any(vector)

        # 2. Vector candidates
        if usable_vector:
            top_n = filters.top_n or self._vector_top_n
            hits = token.wait_for(self._executor.submit(
                self._coordinator.index.query,
                vector,
                top_n,
                lambda fact_id: self._admit(view, view.get_fact(fact_id), filters),
            ))
            for fact_id, similarity in hits:
                candidate = candidates.setdefault(fact_id, _Candidate(view.facts[fact_id]))
                candidate.cosine = similarity
        token.check()

        # 3. Graph candidates
        unresolved = self._expand_seeds(view, filters, candidates, token)

        # 4. Score and rank
        ranked = []
        for fact_id, candidate in candidates.items():
            if candidate.cosine is None and usable_vector:
                candidate.cosine = self._coordinator.index.similarity(fact_id, vector)
            vector_score = max(0.0, candidate.cosine or 0.0)
            graph_score = 1.0 / (candidate.hops + 1) if candidate.hops is not None else 0.0
            score = (
                self._vector_weight * vector_score + self._graph_weight * graph_score
            ) / (self._vector_weight + self._graph_weight)
            if score <= 0.0:
                continue
            ranked.append(RankedResult(
                fact=candidate.fact,
                score=score,
                vector_score=vector_score,
                graph_score=graph_score,
                provenance=Provenance(
                    fact_ids=[fact_id],
                    version=view.version,
                    source=candidate.fact.source,
                    hops=candidate.hops,
                ),
            ))
        ranked.sort(key=lambda r: (-r.score, r.fact.id))
        token.check()

        # 5. Withhold anything unlearned while we were running
        unlearned = self._coordinator.unlearned_since(view.version)
        dropped = sorted(r.fact.id for r in ranked if r.fact.id in unlearned)
        if dropped:
            logger.info("Withheld %d facts unlearned after v%d", len(dropped), view.version)
            ranked = [r for r in ranked if r.fact.id not in unlearned]

        top_k = filters.top_k or self._top_k
        return Answer(
            query=text,
            version=view.version,
            results=ranked[:top_k],
            unresolved_entities=unresolved,
            dropped_fact_ids=dropped,
        )

    def _expand_seeds(
        self,
        view: GraphState,
        filters: QueryFilters,
        candidates: dict[str, _Candidate],
        token: CancellationToken,
    ) -> list[str]:
        """Add facts around each seed entity; return the unknown seeds."""
        depth = self._graph_depth if filters.depth is None else filters.depth
        unresolved = []
        for seed in filters.entities:
            token.check()
            try:
                traversal = view.neighbors(seed, filters.edge_types, filters.direction, depth)
            except UnknownEntity:
                unresolved.append(seed)
                continue

            for entity_id, hop in traversal.hops.items():
                for fact in view.facts_about(entity_id):
                    if not self._admit(view, fact, filters):
                        continue
                    candidate = candidates.setdefault(fact.id, _Candidate(fact))
                    if candidate.hops is None or hop < candidate.hops:
                        candidate.hops = hop
        return unresolved

    @staticmethod
    def _admit(view: GraphState, fact: Optional[Fact], filters: QueryFilters) -> bool:
        """Only active facts matching the filters may be ranked."""
        if fact is None or not fact.is_active():
            return False
        if filters.predicates is not None and fact.predicate not in filters.predicates:
            return False
        if filters.entity_kinds is not None:
            subject = view.get_entity(fact.subject)
            if subject is None or subject.kind not in filters.entity_kinds:
                return False
        return True

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
