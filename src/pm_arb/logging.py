from __future__ import annotations

import logging
import structlog


def configure_logging(level: int = logging.INFO, json_logs: bool = True) -> None:
    """JSON logs for the scheduler; ``json_logs=False`` gives a readable console for local runs."""
    logging.basicConfig(level=level)
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            # run_id/run_type are bound per detection run
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
    )


def configure_from_settings(debug: bool) -> None:
    configure_logging(logging.DEBUG if debug else logging.INFO, json_logs=not debug)
