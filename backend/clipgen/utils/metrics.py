"""
Prometheus metrics definitions for the API process and Celery workers.
All metrics are registered here and can be imported by other modules.
"""
from prometheus_client import Counter, Histogram, Gauge

# HTTP request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'path', 'status']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'path'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Error metrics
errors_total = Counter(
    'errors_total',
    'Total errors',
    ['error_type']
)

# Generation job metrics
generation_jobs_submitted_total = Counter(
    'generation_jobs_submitted_total',
    'Total generation jobs submitted',
    ['provider', 'kind']
)

generation_jobs_rejected_total = Counter(
    'generation_jobs_rejected_total',
    'Total generation submissions rejected before a job was created',
    ['reason']
)

generation_jobs_in_flight = Gauge(
    'generation_jobs_in_flight',
    'Number of generation pipelines currently running',
    ['provider']
)

generation_jobs_finished_total = Counter(
    'generation_jobs_finished_total',
    'Total generation jobs reaching a terminal state',
    ['provider', 'status']
)

generation_job_duration_seconds = Histogram(
    'generation_job_duration_seconds',
    'Generation pipeline duration in seconds',
    ['provider', 'status'],
    buckets=[5.0, 15.0, 30.0, 60.0, 120.0, 180.0, 300.0, 600.0, 900.0]
)

generation_cost_usd_total = Counter(
    'generation_cost_usd_total',
    'Estimated provider cost of completed generations in USD',
    ['provider', 'model']
)

# Provider metrics
provider_requests_total = Counter(
    'provider_requests_total',
    'Total AI provider requests',
    ['provider', 'operation']
)

provider_failures_total = Counter(
    'provider_failures_total',
    'Total AI provider failures',
    ['provider', 'operation']
)

provider_latency_seconds = Histogram(
    'provider_latency_seconds',
    'AI provider request latency in seconds',
    ['provider', 'operation'],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 300.0, 600.0]
)

provider_tokens_total = Counter(
    'provider_tokens_total',
    'Tokens consumed by language model calls',
    ['provider', 'operation', 'token_type']
)

provider_stale_upload_retries_total = Counter(
    'provider_stale_upload_retries_total',
    'Submissions retried after a stale upload handle',
    ['provider']
)

# Credit ledger metrics
credits_deducted_total = Counter(
    'credits_deducted_total',
    'Total credits deducted',
    ['source']
)

credits_refunded_total = Counter(
    'credits_refunded_total',
    'Total credits refunded',
    ['source']
)

credit_auto_buys_total = Counter(
    'credit_auto_buys_total',
    'Total automatic top-up purchases',
    ['pack']
)

credit_deductions_failed_total = Counter(
    'credit_deductions_failed_total',
    'Deductions rejected for insufficient credits'
)

credit_write_conflicts_total = Counter(
    'credit_write_conflicts_total',
    'Account writes retried because another writer changed the row first'
)

# Media cache metrics
media_cache_requests_total = Counter(
    'media_cache_requests_total',
    'Media preparation cache lookups',
    ['kind', 'result']
)

media_transcode_duration_seconds = Histogram(
    'media_transcode_duration_seconds',
    'Transcoder invocation duration in seconds',
    ['operation'],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

upload_handle_cache_requests_total = Counter(
    'upload_handle_cache_requests_total',
    'Upload handle cache lookups',
    ['provider', 'result']
)

# Local render gate
render_gate_waiting = Gauge(
    'render_gate_waiting',
    'Renders queued behind the local render permit'
)

# Maintenance worker
maintenance_tasks_total = Counter(
    'maintenance_tasks_total',
    'Maintenance task runs',
    ['task', 'status']
)

prepared_files_swept_total = Counter(
    'prepared_files_swept_total',
    'Prepared media files removed by the sweep'
)

# Prompt enhancement
prompt_enhancements_total = Counter(
    'prompt_enhancements_total',
    'Prompt enhancement requests by mode and whether image context was used',
    ['mode', 'context']
)
