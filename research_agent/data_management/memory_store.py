"""Outcome memory that learns which strategies and domains work for a query type.

Follows the same storage conventions as the other stores:
- In-memory indexes for synchronous reads
- asyncio lock around every mutation
- Persistence through an injected key-value store under one namespaced key

Usage:
    from research_agent.data_management.kv_store import JsonFileKeyValueStore
    from research_agent.data_management.memory_store import MemoryStore

    memory = MemoryStore(JsonFileKeyValueStore("data/agent_memory.json"))
    await memory.load()
    recommendation = memory.get_recommendations("Apple quarterly revenue")
"""

import asyncio
from typing import Any, Iterable, Optional

import structlog
from pydantic import ValidationError

from research_agent.data_management.kv_store import InMemoryKeyValueStore, KeyValueStore
from research_agent.data_management.schemas.memory_schema import (
    AgentMemory,
    MemoryKind,
    PatternStats,
    SourceUsage,
    SourceUsefulness,
    StrategyRecommendation,
)
from research_agent.data_management.schemas.research_schema import QualityScore, ResearchPlan

MEMORY_KEY = "research_agent:memory"
MAX_MEMORIES = 200
MAX_PATTERNS_PER_QUERY = 10
MAX_SOURCE_SAMPLES = 50
MAX_TRACKED_DOMAINS = 500
MAX_TRACKED_PATTERNS = 500
PATTERN_KEYWORDS = 5
PATTERN_STOPWORDS = frozenset({"the", "and", "for", "with", "that", "this", "from", "have"})

PRIORITIZE_MIN_SCORE = 0.7
PRIORITIZE_MIN_SAMPLES = 3
PRIORITIZE_LIMIT = 10
AVOID_MAX_SCORE = 0.3
AVOID_MIN_SAMPLES = 5
AVOID_LIMIT = 5
DEFAULT_EXPECTED_QUALITY = 0.5

HIGH_QUALITY_THRESHOLD = 0.8
LOW_QUALITY_THRESHOLD = 0.5


def extract_query_pattern(query: str) -> str:
    """Normalized pattern for a query: its first significant keywords, sorted.

    Args:
        query: Natural-language query.

    Returns:
        Underscore-joined keywords, e.g. ``"apple_quarterly_revenue"``.
    """
    words = query.lower().split()
    keywords = [w for w in words if len(w) > 3 and w not in PATTERN_STOPWORDS]
    return "_".join(sorted(keywords[:PATTERN_KEYWORDS]))


class MemoryStore:
    """Append-only research outcome log with derived recommendations.

    Reads (recommendations, similar queries, stats) are synchronous and served
    from memory. Mutations are async, serialized by a lock and persisted
    through the key-value store.
    """

    def __init__(self, store: Optional[KeyValueStore] = None, key: str = MEMORY_KEY) -> None:
        """Initialize MemoryStore.

        Args:
            store: Durable key-value store. Defaults to an in-memory store.
            key: Key under which the whole memory document is stored.
        """
        self._store = store or InMemoryKeyValueStore()
        self._key = key
        self._memories: list[AgentMemory] = []
        self._source_scores: dict[str, SourceUsefulness] = {}
        self._query_patterns: dict[str, PatternStats] = {}
        self._patterns: dict[str, list[dict[str, Any]]] = {}
        self._lock = asyncio.Lock()
        self._logger = structlog.get_logger().bind(component="MemoryStore")

    async def load(self) -> None:
        """Load persisted state. An empty or malformed payload yields empty memory."""
        async with self._lock:
            payload = await self._store.get(self._key)
            if not payload:
                self._logger.info("memory_empty", key=self._key)
                return
            try:
                self._memories = [AgentMemory.model_validate(m) for m in payload.get("memories", [])]
                self._source_scores = {
                    domain: SourceUsefulness.model_validate({"domain": domain, **value})
                    for domain, value in payload.get("source_quality", {}).items()
                }
                self._query_patterns = {
                    pattern: PatternStats.model_validate({"pattern": pattern, **value})
                    for pattern, value in payload.get("query_patterns", {}).items()
                }
                self._patterns = dict(payload.get("patterns", {}))
            except (ValidationError, AttributeError, TypeError) as e:
                self._logger.error("memory_load_failed", error=str(e))
                self._reset_state()
                return

            self._logger.info(
                "memory_loaded",
                memories=len(self._memories),
                domains=len(self._source_scores),
            )

    async def record_outcome(
        self,
        query: str,
        plan: ResearchPlan,
        quality: QualityScore,
        sources: Iterable[SourceUsage],
        success: bool,
    ) -> AgentMemory:
        """Record a finished run and update every derived index.

        Args:
            query: The researched query.
            plan: Plan that was executed (strategy and adaptations are learned from).
            quality: Final quality score.
            sources: Sources used, each marked useful or not.
            success: Whether the run is considered successful.

        Returns:
            The stored AgentMemory.
        """
        sources = list(sources)
        pattern = extract_query_pattern(query)
        memory = AgentMemory(
            kind=MemoryKind.SUCCESS if success else MemoryKind.FAILURE,
            query=query,
            query_pattern=pattern,
            approach=plan.strategy.approach,
            strategy={
                "approach": plan.strategy.approach,
                "source_types": list(plan.strategy.source_types),
                "verification_level": plan.strategy.verification_level,
            },
            outcome="Research completed successfully" if success else "Research failed or low quality",
            learnings=self._extract_learnings(plan, quality, sources, success),
            quality=quality.overall,
            relevance_score=quality.overall,
        )

        async with self._lock:
            self._memories.append(memory)
            self._memories = self._memories[-MAX_MEMORIES:]

            for source in sources:
                self._update_source_usefulness(source.domain, source.useful)

            stats = self._query_patterns.pop(pattern, None) or PatternStats(pattern=pattern)
            self._query_patterns[pattern] = stats
            stats.total += 1
            if success:
                stats.success += 1
                approach = plan.strategy.approach
                stats.approaches[approach] = stats.approaches.get(approach, 0) + 1

            self._detect_patterns(memory)
            self._prune()
            await self._persist()

        self._logger.info(
            "outcome_recorded",
            pattern=pattern,
            success=success,
            quality=round(quality.overall, 3),
            sources=len(sources),
        )
        return memory

    def _extract_learnings(
        self,
        plan: ResearchPlan,
        quality: QualityScore,
        sources: list[SourceUsage],
        success: bool,
    ) -> list[str]:
        learnings: list[str] = []
        approach = plan.strategy.approach

        if success and quality.overall > HIGH_QUALITY_THRESHOLD:
            learnings.append(f'Strategy "{approach}" worked well for this query type')
            useful_domains = list(dict.fromkeys(s.domain for s in sources if s.useful))
            if useful_domains:
                learnings.append(f"Reliable domains: {', '.join(useful_domains[:5])}")

        if not success or quality.overall < LOW_QUALITY_THRESHOLD:
            learnings.append(f'Strategy "{approach}" was ineffective')
            if quality.source_quality < LOW_QUALITY_THRESHOLD:
                learnings.append("Need to prioritize higher quality sources")
            if quality.claim_verification < LOW_QUALITY_THRESHOLD:
                learnings.append("Increase verification level for similar queries")

        if plan.adaptations:
            learnings.append(f"Required {len(plan.adaptations)} adaptations during execution")

        return learnings

    def _update_source_usefulness(self, domain: str, useful: bool) -> None:
        """Incremental mean, with the weight floor set by MAX_SOURCE_SAMPLES."""
        entry = self._source_scores.pop(domain, None) or SourceUsefulness(domain=domain)
        self._source_scores[domain] = entry
        weight = 1.0 / (min(entry.samples, MAX_SOURCE_SAMPLES - 1) + 1)
        entry.score = max(0.0, min(1.0, entry.score + ((1.0 if useful else 0.0) - entry.score) * weight))
        entry.samples += 1

    def _detect_patterns(self, memory: AgentMemory) -> None:
        patterns = self._patterns.setdefault(memory.query_pattern, [])
        if memory.kind == MemoryKind.SUCCESS:
            level = memory.strategy.get("verification_level", "standard")
            patterns.append(
                {
                    "approach": memory.approach,
                    "verification_level": level,
                    "confidence": memory.relevance_score,
                    "recommendation": f"Use {memory.approach} with {level} verification",
                }
            )
        self._patterns[memory.query_pattern] = patterns[-MAX_PATTERNS_PER_QUERY:]

    def _prune(self) -> None:
        """Drop the least recently updated domains and query patterns beyond their caps."""
        for domain in list(self._source_scores)[: -MAX_TRACKED_DOMAINS]:
            del self._source_scores[domain]
        for pattern in list(self._query_patterns)[: -MAX_TRACKED_PATTERNS]:
            del self._query_patterns[pattern]
            self._patterns.pop(pattern, None)
        for pattern in list(self._patterns):
            if pattern not in self._query_patterns:
                del self._patterns[pattern]

    def get_recommendations(self, query: str) -> StrategyRecommendation:
        """Recommend a strategy and domains for ``query`` from past outcomes."""
        pattern = extract_query_pattern(query)
        stats = self._query_patterns.get(pattern)
        patterns = self._patterns.get(pattern, [])

        best = max(patterns, key=lambda p: p.get("confidence", 0.0)) if patterns else None

        ranked = sorted(self._source_scores.values(), key=lambda s: s.score, reverse=True)
        prioritize = [
            s.domain
            for s in ranked
            if s.score > PRIORITIZE_MIN_SCORE and s.samples > PRIORITIZE_MIN_SAMPLES
        ][:PRIORITIZE_LIMIT]
        avoid = [
            s.domain
            for s in reversed(ranked)
            if s.score < AVOID_MAX_SCORE and s.samples > AVOID_MIN_SAMPLES
        ][:AVOID_LIMIT]

        expected = stats.success / stats.total if stats and stats.total else DEFAULT_EXPECTED_QUALITY

        similar = self.find_similar_queries(query, limit=5)
        return StrategyRecommendation(
            query_pattern=pattern,
            recommended_approach=best["approach"] if best else None,
            prioritize_sources=prioritize,
            avoid_sources=avoid,
            expected_quality=expected,
            similar_queries=[m.query for m in similar],
            learnings=[learning for m in similar for learning in m.learnings][:5],
        )

    def get_source_quality(self, domain: str) -> float:
        entry = self._source_scores.get(domain)
        return entry.score if entry else 0.5

    def find_similar_queries(self, query: str, limit: int = 5) -> list[AgentMemory]:
        """Memories whose query pattern shares at least one keyword with ``query``."""
        words = set(filter(None, extract_query_pattern(query).split("_")))
        if not words:
            return []
        matches = [
            m for m in self._memories
            if words.intersection(filter(None, m.query_pattern.split("_")))
        ]
        matches.sort(key=lambda m: m.relevance_score, reverse=True)
        return matches[:limit]

    def get_stats(self) -> dict[str, Any]:
        """Summary of what has been learned so far."""
        successes = sum(1 for m in self._memories if m.kind == MemoryKind.SUCCESS)
        top_sources = sorted(
            (s for s in self._source_scores.values() if s.samples > PRIORITIZE_MIN_SAMPLES),
            key=lambda s: s.score,
            reverse=True,
        )[:10]
        recent = [learning for m in self._memories[-10:] for learning in m.learnings][-10:]
        return {
            "total_memories": len(self._memories),
            "success_rate": successes / len(self._memories) if self._memories else 0.0,
            "top_sources": [{"domain": s.domain, "score": round(s.score, 3)} for s in top_sources],
            "recent_learnings": recent,
            "known_patterns": len(self._query_patterns),
        }

    async def clear(self) -> None:
        """Forget everything and persist the empty state."""
        async with self._lock:
            self._reset_state()
            await self._persist()
        self._logger.info("memory_cleared")

    def _reset_state(self) -> None:
        self._memories = []
        self._source_scores = {}
        self._query_patterns = {}
        self._patterns = {}

    async def _persist(self) -> None:
        payload = {
            "memories": [m.model_dump(mode="json") for m in self._memories[-MAX_MEMORIES:]],
            "source_quality": {
                d: s.model_dump(exclude={"domain"}) for d, s in self._source_scores.items()
            },
            "query_patterns": {
                p: s.model_dump(exclude={"pattern"}) for p, s in self._query_patterns.items()
            },
            "patterns": self._patterns,
        }
        await self._store.set(self._key, payload)

    @property
    def memories(self) -> list[AgentMemory]:
        return list(self._memories)
