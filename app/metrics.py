from prometheus_client import Counter, Histogram

# Registered once per process; every app built by create_app() shares them.

HTTP_REQUESTS_TOTAL = Counter(
    "chatrelay_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_class"],
)
HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "chatrelay_http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "path"],
)
CHAT_TURNS_TOTAL = Counter(
    "chatrelay_chat_turns_total",
    "Chat turns by outcome",
    ["outcome"],
)
COMPLETION_SECONDS = Histogram(
    "chatrelay_completion_seconds",
    "Duration of completion provider calls in seconds",
    ["provider"],
    buckets=(0.25, 0.5, 1.0, 2.0, 4.0, 8.0, 15.0, 30.0),
)
STORE_ERRORS_TOTAL = Counter(
    "chatrelay_store_errors_total",
    "Record store failures by operation",
    ["operation"],
)
