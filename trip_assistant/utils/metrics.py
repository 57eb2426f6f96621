"""
Metrics tracking utilities
"""
from prometheus_client import Counter, Histogram
import structlog

logger = structlog.get_logger()

# Define metrics
turn_counter = Counter(
    'trip_assistant_turns_total',
    'Conversation turns by terminal phase',
    ['outcome']
)

classification_counter = Counter(
    'trip_assistant_classifications_total',
    'Classifier outcomes',
    ['result']
)

fragment_counter = Counter(
    'trip_assistant_fragments_received_total',
    'Completion fragments received'
)

product_reference_counter = Counter(
    'trip_assistant_product_references_total',
    'Product markers resolved in final documents'
)

first_fragment_latency = Histogram(
    'trip_assistant_first_fragment_latency_seconds',
    'Time from stream open to first fragment',
    buckets=[0.1, 0.5, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0]
)

stream_duration = Histogram(
    'trip_assistant_stream_duration_seconds',
    'Time from stream open to stream end',
    buckets=[1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0]
)


def track_turn(outcome: str):
    """Count a finished turn"""
    turn_counter.labels(outcome=outcome).inc()


def track_stream(fragments: int, references: int, duration: float):
    """Record one completed stream"""
    product_reference_counter.inc(references)
    stream_duration.observe(duration)
    logger.info(
        "Stream completed",
        fragments=fragments,
        references=references,
        duration=duration
    )
