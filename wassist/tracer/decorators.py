"""Tracer decorators for the span levels.

Each decorator creates a span of the appropriate :class:`SpanKind`, pushes
it as the *current* span for the duration of the decorated ``async`` call,
and pops it on exit.  If no tracer has been activated the decorated function
runs untraced.

Usage::

    from wassist.tracer import trace_query, trace_plan, trace_step, trace_tool, trace_llm

    @trace_query("agent_query")
    async def execute_agent_query(self, chat_id, prompt, options):
        ...

    @trace_step(name_kwarg="step_name")
    async def _run_step(self, step, step_name: str):
        ...

    @trace_tool()                          # name read from ``tool_name``
    async def invoke(self, tool_name, args, context):
        ...
"""

from __future__ import annotations

import functools
import inspect
from typing import Any, Callable, TypeVar

from wassist.tracer.context import get_active_tracer
from wassist.tracer.span import SpanKind

F = TypeVar("F", bound=Callable[..., Any])


def _span_name(fn: Callable, name: str | None, name_kwarg: str | None, args: tuple, kwargs: dict) -> str:
    span_name = name or fn.__name__
    if name_kwarg is None:
        return span_name
    if kwargs.get(name_kwarg):
        return str(kwargs[name_kwarg])
    params = list(inspect.signature(fn).parameters.keys())
    if name_kwarg in params:
        idx = params.index(name_kwarg)
        if idx < len(args):
            return str(args[idx])
    return span_name


def _make_decorator(
    kind: SpanKind,
    name: str | None = None,
    *,
    auto_export: bool = False,
    name_kwarg: str | None = None,
) -> Callable[[F], F]:
    """Build a decorator that wraps an *async* function in a span.

    Parameters
    ----------
    kind:
        The semantic span level.
    name:
        Fixed label for the span.  If ``None`` the function name is used,
        or a keyword argument can be inspected (see *name_kwarg*).
    auto_export:
        If ``True`` the finished span tree is exported (used by ``@trace_query``).
    name_kwarg:
        If set, the span name is read from this argument at call time.
    """

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = get_active_tracer()
            if tracer is None:
                return await fn(*args, **kwargs)

            span, token = tracer.start_span(kind, _span_name(fn, name, name_kwarg, args, kwargs))
            error: BaseException | None = None
            try:
                return await fn(*args, **kwargs)
            except BaseException as exc:
                error = exc
                raise
            finally:
                tracer.end_span(span, token, error)
                if auto_export and span.parent is None:
                    tracer.export(span)

        return wrapper  # type: ignore[return-value]

    return decorator


def trace_query(name: str | None = None) -> Callable[[F], F]:
    """Mark an async function as a **query**-level span.

    The query span is the root of the trace tree for one user request; when
    it ends the tracer exports the collected data.
    """
    return _make_decorator(SpanKind.QUERY, name, auto_export=True)


def trace_plan(name: str | None = None) -> Callable[[F], F]:
    """Mark an async function as a **plan**-level span."""
    return _make_decorator(SpanKind.PLAN, name)


def trace_step(name: str | None = None, *, name_kwarg: str | None = None) -> Callable[[F], F]:
    """Mark an async function as a **step**-level span of a multi-step plan."""
    return _make_decorator(SpanKind.STEP, name, name_kwarg=name_kwarg)


def trace_tool(
    name: str | None = None,
    *,
    name_kwarg: str = "tool_name",
) -> Callable[[F], F]:
    """Mark an async function as a **tool-call**-level span.

    By default the span name is read from the ``tool_name`` argument of the
    decorated function.
    """
    return _make_decorator(SpanKind.TOOL_CALL, name, name_kwarg=name_kwarg)


def trace_llm(name: str) -> Callable[[F], F]:
    """Mark an async function as an **LLM-call**-level span.

    The :class:`~wassist.tracer.callback.TracerCallbackHandler` attaches the
    request/response data to this span when the underlying ``ainvoke`` call
    fires LangChain callbacks.
    """
    return _make_decorator(SpanKind.LLM_CALL, name)
