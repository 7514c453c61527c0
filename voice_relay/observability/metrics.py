"""
Prometheus metrics for the voice relay.

Exports:
- Session counters and active sessions gauge
- Turn outcomes (completed, interrupted, failed, empty)
- Error counter by kind
- External stage latency histogram
- Phase transition counter
"""

from prometheus_client import Counter, Gauge, Histogram

# =============================================================================
# Latency metrics
# =============================================================================

voice_stage_latency = Histogram(
    "voice_stage_latency_seconds",
    "Latency of external services per turn stage",
    ["stage"],  # transcribe, generate, synthesize
    buckets=(0.05, 0.1, 0.2, 0.3, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0, 30.0),
)

# =============================================================================
# Throughput metrics
# =============================================================================

voice_sessions_total = Counter(
    "voice_sessions_total",
    "Total voice sessions ended",
    ["end_reason"],  # disconnected, timeout, shutdown
)

voice_turns_total = Counter(
    "voice_turns_total",
    "Total turns by outcome",
    ["outcome"],  # completed, interrupted, failed, empty
)

voice_errors_total = Counter(
    "voice_errors_total",
    "Error events sent to clients",
    ["kind"],
)

voice_phase_transitions_total = Counter(
    "voice_phase_transitions_total",
    "Session phase transitions",
    ["from_phase", "to_phase"],
)

# =============================================================================
# State metrics
# =============================================================================

voice_active_sessions = Gauge(
    "voice_active_sessions",
    "Currently active voice sessions",
)


# =============================================================================
# Helper functions
# =============================================================================


def record_stage_latency(stage: str, seconds: float) -> None:
    """Record how long an external stage took."""
    voice_stage_latency.labels(stage=stage).observe(seconds)


def record_turn_outcome(outcome: str) -> None:
    """Record how a turn ended."""
    voice_turns_total.labels(outcome=outcome).inc()


def record_error(kind: str) -> None:
    """Record an error event sent to a client."""
    voice_errors_total.labels(kind=kind).inc()


def record_phase_transition(from_phase, event, to_phase) -> None:
    """Transition listener for TurnStateMachine."""
    voice_phase_transitions_total.labels(
        from_phase=from_phase.value,
        to_phase=to_phase.value,
    ).inc()


def record_session_ended(reason: str) -> None:
    """Record a session ending."""
    voice_sessions_total.labels(end_reason=reason).inc()


def update_session_metrics(active_sessions: int) -> None:
    """Update session-related gauge metrics."""
    voice_active_sessions.set(active_sessions)
