import logging
import sys

import structlog
from structlog.contextvars import clear_contextvars
from structlog.typing import EventDict, Processor

# per-request lines from the HTTP stack drown out pipeline events
NOISY_LOGGERS = ("httpx", "httpcore", "langsmith")


def add_service_name(service: str) -> Processor:
    def processor(logger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service)
        return event_dict

    return processor


def configure_logging(level: str, service: str = "fieldops-core") -> None:
    """
    Configure structured JSON logging for the service.

    The orchestrator binds tenant_id/user_id for the lifetime of each input and
    the HTTP middleware binds request_id, so pipeline events from the
    classifier, executor and stores carry them through merge_contextvars.
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stdout,
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_service_name(service),
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level)),
        cache_logger_on_first_use=True,
    )
    clear_contextvars()
