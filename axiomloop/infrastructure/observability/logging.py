import structlog
import logging
import sys
from contextlib import contextmanager
from typing import Dict, Any, Iterator, Optional
import os

REQUEST_CONTEXT_KEYS = ("request_id", "surface")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "axiomloop"
) -> None:
    """Configure structlog on top of stdlib logging"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            add_request_context,
            _renderer(log_format),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the bound request id and surface onto every entry"""

    context = structlog.contextvars.get_contextvars()
    for key in REQUEST_CONTEXT_KEYS:
        if key in context:
            event_dict.setdefault(key, context[key])
    return event_dict


@contextmanager
def request_context(surface: str, request_id: str) -> Iterator[None]:
    """Bind request id and surface for log entries emitted inside the block"""

    with structlog.contextvars.bound_contextvars(surface=surface, request_id=request_id):
        yield


class AgentLogger:
    """Event logger for request transitions, tool calls and stream terminals"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_request_transition(
        self,
        surface: str,
        from_state: str,
        to_state: str,
        reason: Optional[str] = None
    ):
        fields: Dict[str, Any] = {"surface": surface, "from_state": from_state, "to_state": to_state}
        if reason:
            fields["reason"] = reason
        if to_state in ("aborted", "failed", "timed-out"):
            self.logger.warning("request_transition", **fields)
        else:
            self.logger.info("request_transition", **fields)

    def log_tool_execution(
        self,
        tool_name: str,
        category: str,
        input_data: Any,
        duration_ms: Optional[float] = None,
        success: bool = True,
        error: Optional[str] = None
    ):
        """Tool call outcome; failures are warnings because the agent sees them as tool output"""

        log = self.logger.info if success else self.logger.warning
        log(
            "tool_execution",
            tool_name=tool_name,
            category=category,
            input_data=input_data,
            duration_ms=round(duration_ms, 1) if duration_ms is not None else None,
            success=success,
            error=error
        )

    def log_stream_event(self, surface: str, event_type: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info("stream_event", surface=surface, event_type=event_type, **(data or {}))


agent_logger = AgentLogger("axiomloop")


class LatencyStats:
    """Running count/total/min/max of one operation"""

    def __init__(self):
        self.count = 0
        self.total_ms = 0.0
        self.min_ms: Optional[float] = None
        self.max_ms = 0.0

    def add(self, duration_ms: float):
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0,
            "min": self.min_ms or 0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """In-process request metrics, reported on the health endpoint"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = {}
        self.counters: Dict[str, int] = {}
        self.surface_counters: Dict[str, Dict[str, int]] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        self.latencies.setdefault(f"latency.{operation}", LatencyStats()).add(duration_ms)
        agent_logger.logger.debug("metric", metric_type="latency", operation=operation,
                                  duration_ms=duration_ms, **(tags or {}))

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Bump a counter; a ``surface`` tag also feeds the per-surface breakdown"""

        self.counters[name] = self.counters.get(name, 0) + value
        surface = (tags or {}).get("surface")
        if surface:
            per_surface = self.surface_counters.setdefault(surface, {})
            per_surface[name] = per_surface.get(name, 0) + value
        agent_logger.logger.debug("metric", metric_type="counter", name=name, value=value, **(tags or {}))

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = dict(self.counters)
        for key, stats in self.latencies.items():
            summary[key] = stats.summary()
        if self.surface_counters:
            summary["by_surface"] = {surface: dict(counts) for surface, counts in self.surface_counters.items()}
        return summary

    def reset(self):
        self.latencies = {}
        self.counters = {}
        self.surface_counters = {}


metrics = MetricsCollector()
