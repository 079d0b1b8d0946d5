from prometheus_client import Counter, Gauge, Histogram

# 低基数标签：只按 HTTP 方法和状态聚合，不含对象键或 uploadId
REQUESTS = Counter(
    "oss_client_requests_total",
    "Total object storage requests",
    ["method", "status"],
)

LATENCY = Histogram(
    "oss_client_request_duration_seconds",
    "Object storage request latency in seconds",
    ["method"],
)

IN_FLIGHT = Gauge(
    "oss_client_requests_in_flight",
    "Object storage requests currently executing",
)

BYTES_SENT = Counter(
    "oss_client_bytes_sent_total",
    "Request body bytes handed to the transport",
)
