from prometheus_client import Gauge

BUDGET_STATE = Gauge(
    "tp_budget_state", "Failure budget state (0 healthy, 1 degraded, 2 halted)", ["source"]
)
FAILURE_COUNT = Gauge(
    "tp_failure_count", "Failed sampling passes counted against the budget", ["source"]
)
PAGE_FETCHES = Gauge("tp_page_fetches", "Audit pages fetched to estimate a queue", ["queue"])
POLL_COMPLETED = Gauge("tp_poll_completed", "Per-queue metric queries completed", ["source"])
QUEUES_SAMPLED = Gauge("tp_queues_sampled", "Queues with a usable counter reading", ["source"])
QUEUES_TOTAL = Gauge("tp_queues_total", "Queues enumerated for sampling", ["source"])
RATE_LIMIT_QUEUED = Gauge(
    "tp_rate_limit_queued", "Requests waiting for a rate limiter permit", ["source"]
)
THROUGHPUT = Gauge(
    "tp_throughput", "Throughput measured over the observation window", ["source", "queue"]
)
