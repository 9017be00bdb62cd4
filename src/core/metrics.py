"""
Prometheus metrics for the aggregation engine
"""

from prometheus_client import Counter, Histogram

upstream_requests = Counter(
    'discovery_upstream_requests_total',
    'Upstream provider GET attempts',
    ['outcome']
)
branch_completions = Counter(
    'discovery_branch_completions_total',
    'Aggregation branch completions',
    ['kind', 'status']
)
aggregation_duration = Histogram(
    'discovery_aggregation_duration_seconds',
    'Participant aggregation duration'
)
annotation_writes = Counter(
    'discovery_annotation_writes_total',
    'Annotation upserts',
    ['status']
)
