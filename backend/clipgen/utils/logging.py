"""
Production logging utility for structured JSON logging.

Provides event-specific logging functions with mandatory fields:
- timestamp (ISO8601)
- level
- service
- event

Optional fields (included when applicable):
- job_id
- account_id
- duration_ms

Usage:
    from clipgen.utils.logging import configure_logging, log_job_submitted

    configure_logging('clipgen-api', 'INFO')
    log_job_submitted(logger, job_id='123', account_id='456', provider='runway', ...)
"""
import logging
import sys
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger

# SDK loggers that log every HTTP call at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "botocore", "urllib3")


class ServiceFilter(logging.Filter):
    """Stamps every record with the service name."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record):
        record.service = self.service_name
        return True


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _service_name = None
    _handler: Optional[logging.Handler] = None

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO"):
        """
        Route the root logger through one JSON handler on stdout.

        Calling again (API and worker share the process in tests) only updates
        the service name and level.

        Args:
            service_name: Service identifier (clipgen-api or clipgen-worker)
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
        cls._service_name = service_name

        if cls._handler is not None:
            for existing in cls._handler.filters:
                if isinstance(existing, ServiceFilter):
                    existing.service_name = service_name
            return

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(levelname)s %(service)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)
        handler.addFilter(ServiceFilter(service_name))

        root_logger.handlers = [handler]
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
        cls._handler = handler


def _build_log_extra(
    event: str,
    job_id: Optional[str] = None,
    account_id: Optional[str] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Build extra fields for structured logging.

    Args:
        event: Event name (mandatory)
        job_id: Optional job ID
        account_id: Optional account ID
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields

    Returns:
        Dictionary of extra fields
    """
    extra = {
        "event": event,
        **kwargs
    }

    if job_id:
        extra["job_id"] = job_id
    if account_id:
        extra["account_id"] = account_id
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


def _log_error(logger: logging.Logger, message: str, extra: Dict[str, Any], include_traceback: bool):
    """Log at ERROR, attaching the active exception when asked to."""
    if include_traceback:
        exc_info = sys.exc_info()
        if exc_info[0] is not None:
            logger.error(message, extra=extra, exc_info=exc_info)
            return
    logger.error(message, extra=extra)


# Job event functions

def log_job_submitted(
    logger: logging.Logger,
    job_id: str,
    account_id: str,
    provider: str,
    model: str,
    kind: str,
    credits_charged: int,
    **kwargs
):
    """
    Log generation job submission.

    Args:
        logger: Logger instance
        job_id: Job ID (required)
        account_id: Account ID (required)
        provider: Provider id (runway, fal, motion)
        model: Model id
        kind: Generation kind
        credits_charged: Credits pre-authorized for the job
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="job_submitted",
        job_id=job_id,
        account_id=account_id,
        provider=provider,
        model=model,
        kind=kind,
        credits_charged=credits_charged,
        **kwargs
    )

    logger.info(f"Job submitted: {job_id}", extra=extra)


def log_job_completed(
    logger: logging.Logger,
    job_id: str,
    account_id: str,
    duration_ms: float,
    cost_estimate_usd: Optional[float] = None,
    **kwargs
):
    """
    Log generation job completion.

    Args:
        logger: Logger instance
        job_id: Job ID (required)
        account_id: Account ID (required)
        duration_ms: Pipeline duration in milliseconds (required)
        cost_estimate_usd: Estimated provider cost
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="job_completed",
        job_id=job_id,
        account_id=account_id,
        duration_ms=duration_ms,
        **kwargs
    )
    if cost_estimate_usd is not None:
        extra["cost_estimate_usd"] = cost_estimate_usd

    logger.info(f"Job completed: {job_id}", extra=extra)


def log_job_failed(
    logger: logging.Logger,
    job_id: str,
    account_id: str,
    error: str,
    duration_ms: Optional[float] = None,
    stage: Optional[str] = None,
    include_traceback: bool = True,
    **kwargs
):
    """
    Log generation job failure.

    Args:
        logger: Logger instance
        job_id: Job ID (required)
        account_id: Account ID (required)
        error: Error message (required)
        duration_ms: Optional duration in milliseconds
        stage: Pipeline stage the job was in when it failed
        include_traceback: Whether to include stack trace (default: True for errors)
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="job_failed",
        job_id=job_id,
        account_id=account_id,
        duration_ms=duration_ms,
        error=str(error),
        **kwargs
    )
    if stage:
        extra["stage"] = stage

    _log_error(logger, f"Job failed: {job_id} - {error}", extra, include_traceback)


# Provider event functions

def log_provider_request(
    logger: logging.Logger,
    provider: str,
    operation: str,
    duration_ms: Optional[float] = None,
    job_id: Optional[str] = None,
    **kwargs
):
    """
    Log provider request event.

    Args:
        logger: Logger instance
        provider: Provider name (runway, fal) (required)
        operation: Operation name (upload, submit, await) (required)
        duration_ms: Optional duration in milliseconds
        job_id: Optional job ID
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="provider_request",
        job_id=job_id,
        duration_ms=duration_ms,
        provider=provider,
        operation=operation,
        **kwargs
    )

    logger.info(f"Provider request: {provider}.{operation}", extra=extra)


def log_provider_failure(
    logger: logging.Logger,
    provider: str,
    operation: str,
    error: str,
    duration_ms: Optional[float] = None,
    job_id: Optional[str] = None,
    include_traceback: bool = False,
    **kwargs
):
    """
    Log provider failure event.

    Args:
        logger: Logger instance
        provider: Provider name (required)
        operation: Operation name (required)
        error: Error message (required)
        duration_ms: Optional duration in milliseconds
        job_id: Optional job ID
        include_traceback: Whether to include stack trace (default: False for provider failures)
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="provider_failure",
        job_id=job_id,
        duration_ms=duration_ms,
        provider=provider,
        operation=operation,
        error=str(error),
        **kwargs
    )

    _log_error(logger, f"Provider failure: {provider}.{operation} - {error}", extra, include_traceback)


# Ledger event functions

def log_credits_deducted(
    logger: logging.Logger,
    account_id: str,
    amount: int,
    source: str,
    balance_after: int,
    job_id: Optional[str] = None,
    **kwargs
):
    """Log a successful credit deduction."""
    extra = _build_log_extra(
        event="credits_deducted",
        job_id=job_id,
        account_id=account_id,
        amount=amount,
        source=source,
        balance_after=balance_after,
        **kwargs
    )

    logger.info(f"Credits deducted: {amount} from {account_id} ({source})", extra=extra)


def log_credits_refunded(
    logger: logging.Logger,
    account_id: str,
    amount: int,
    source: str,
    balance_after: int,
    job_id: Optional[str] = None,
    **kwargs
):
    """Log a compensating refund."""
    extra = _build_log_extra(
        event="credits_refunded",
        job_id=job_id,
        account_id=account_id,
        amount=amount,
        source=source,
        balance_after=balance_after,
        **kwargs
    )

    logger.info(f"Credits refunded: {amount} to {account_id} ({source})", extra=extra)


def log_credits_auto_buy(
    logger: logging.Logger,
    account_id: str,
    pack_id: str,
    credits: int,
    shortfall: int,
    **kwargs
):
    """Log an automatic top-up purchase triggered by a short deduction."""
    extra = _build_log_extra(
        event="credits_auto_buy",
        account_id=account_id,
        pack_id=pack_id,
        credits=credits,
        shortfall=shortfall,
        **kwargs
    )

    logger.info(f"Auto-buy: {pack_id} pack (+{credits}) for {account_id}", extra=extra)


# Media event functions

def log_media_prepared(
    logger: logging.Logger,
    operation: str,
    source_path: str,
    output_path: str,
    cache_hit: bool,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """
    Log a prepared clip or extracted frame.

    Args:
        logger: Logger instance
        operation: "clip" or "frame"
        source_path: Original asset path
        output_path: Prepared file path
        cache_hit: Whether the result came from cache
        duration_ms: Transcode duration (cache misses only)
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="media_prepared",
        duration_ms=duration_ms,
        operation=operation,
        source_path=source_path,
        output_path=output_path,
        cache_hit=cache_hit,
        **kwargs
    )

    logger.info(f"Media prepared ({operation}, cache_hit={cache_hit}): {output_path}", extra=extra)


def configure_logging(service_name: str, log_level: str = "INFO"):
    """Configure JSON logging for the API or the maintenance worker."""
    StructuredLogger.configure(service_name, log_level)
