"""
Prometheus Metrics

Defines and exports metrics for the identity service.
"""

from prometheus_client import Counter, Histogram

# Singleton metrics instance
_metrics: "Metrics | None" = None


class Metrics:
    """
    Prometheus metrics for the identity service.

    Tracks:
    - Duplicate discovery queries and candidate counts
    - Merge outcomes and latency
    - Relations re-pointed by merges
    """

    def __init__(self):
        self.duplicate_queries_total = Counter(
            "identity_duplicate_queries_total",
            "Total duplicate discovery queries",
            ["outcome"],  # matched | empty | invalid
        )

        self.duplicate_candidates = Histogram(
            "identity_duplicate_candidates",
            "Candidates returned per duplicate discovery query",
            buckets=[0, 1, 2, 3, 5, 10, 25, 50],
        )

        self.merges_total = Counter(
            "identity_merges_total",
            "Total merge attempts",
            ["outcome"],  # completed | merge.not_found | merge.conflict | ...
        )

        self.merge_duration_seconds = Histogram(
            "identity_merge_duration_seconds",
            "Merge duration in seconds",
            buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
        )

        self.relations_migrated_total = Counter(
            "identity_relations_migrated_total",
            "Total records re-pointed from merged contacts",
            ["relation"],
        )

    def track_duplicate_query(self, candidates: int) -> None:
        self.duplicate_queries_total.labels(outcome="matched" if candidates else "empty").inc()
        self.duplicate_candidates.observe(candidates)

    def track_merge(self, outcome: str, duration_seconds: float) -> None:
        self.merges_total.labels(outcome=outcome).inc()
        self.merge_duration_seconds.observe(duration_seconds)

    def track_migrated(self, relation: str, count: int) -> None:
        if count:
            self.relations_migrated_total.labels(relation=relation).inc(count)


def get_metrics() -> Metrics:
    """Get or create the singleton metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = Metrics()
    return _metrics
