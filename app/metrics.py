from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path", "status"],
)
REQUEST_ERRORS = Counter(
    "http_request_errors_total",
    "Total HTTP 5xx responses",
    ["method", "path", "status"],
)

JOB_DURATION = Histogram(
    "job_duration_seconds",
    "Background job duration",
    ["task", "status"],
)

STREAM_BYTES = Counter(
    "video_stream_bytes_total",
    "Video bytes sent to clients",
)
STREAM_REQUESTS = Counter(
    "video_stream_requests_total",
    "Video stream requests by response status",
    ["status"],
)

DUNNING_ATTEMPTS = Counter(
    "dunning_attempts_total",
    "Processed dunning attempts",
    ["stage", "status"],
)
DUNNING_ACTIONS = Counter(
    "dunning_actions_total",
    "Dunning actions dispatched",
    ["action"],
)


def observe_job(task_name: str, status: str, duration: float) -> None:
    JOB_DURATION.labels(task=task_name, status=status).observe(duration)
