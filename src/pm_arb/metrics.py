from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

ARB_TRANSITIONS = Counter("arb_transitions_total", "Opportunity lifecycle transitions", ["type", "action"])
ARB_RESOLVED = Counter("arb_resolved_total", "Resolved opportunities by reason", ["type", "reason"])
VOLUME_ALERTS = Counter("volume_alerts_total", "Volume spike alerts written")
LEGS_SKIPPED = Counter("detection_legs_skipped_total", "Evaluations skipped for missing or timed-out data", ["cause"])
RUN_COLLISIONS = Counter("detection_run_collisions_total", "Runs refused because another run was active")
RUNS = Counter("detection_runs_total", "Detection runs by outcome", ["status"])
CYCLE_SECONDS = Histogram("detection_cycle_seconds", "Wall time of one detection run")


def serve(port: int | None) -> None:
    """Expose /metrics on ``port``; no-op when unset."""
    if port:
        start_http_server(port)
