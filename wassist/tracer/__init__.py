from wassist.tracer.context import get_active_tracer, get_current_span, set_current_span
from wassist.tracer.decorators import (
    trace_llm,
    trace_plan,
    trace_query,
    trace_step,
    trace_tool,
)
from wassist.tracer.exporter import YAMLExporter
from wassist.tracer.span import Span, SpanKind, SpanStatus
from wassist.tracer.tracer import Tracer

__all__ = [
    "Tracer",
    "YAMLExporter",
    "Span",
    "SpanKind",
    "SpanStatus",
    "get_active_tracer",
    "get_current_span",
    "set_current_span",
    "trace_query",
    "trace_plan",
    "trace_step",
    "trace_tool",
    "trace_llm",
]
