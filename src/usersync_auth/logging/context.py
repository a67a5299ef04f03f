"""Context variables for structured logging."""

from contextvars import ContextVar

_cycle_id: ContextVar[str] = ContextVar("cycle_id", default="")
_component: ContextVar[str] = ContextVar("component", default="")
_trace_id: ContextVar[str] = ContextVar("trace_id", default="")


def set_log_context(
    cycle_id: str | None = None,
    component: str | None = None,
    trace_id: str | None = None,
) -> None:
    if cycle_id is not None:
        _cycle_id.set(cycle_id)
    if component is not None:
        _component.set(component)
    if trace_id is not None:
        _trace_id.set(trace_id)


def get_log_context() -> dict[str, str]:
    return {
        "cycle_id": _cycle_id.get(),
        "component": _component.get(),
        "trace_id": _trace_id.get(),
    }


def clear_log_context() -> None:
    _cycle_id.set("")
    _component.set("")
    _trace_id.set("")


__all__ = ["set_log_context", "get_log_context", "clear_log_context"]
