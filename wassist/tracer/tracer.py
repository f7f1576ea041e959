import logging
from contextlib import asynccontextmanager
from contextvars import Token
from typing import Any, AsyncIterator, Optional

from wassist.tracer.callback import TracerCallbackHandler
from wassist.tracer.context import (
    get_current_span,
    reset_active_tracer,
    reset_current_span,
    set_active_tracer,
    set_current_span,
)
from wassist.tracer.exporter import YAMLExporter
from wassist.tracer.span import Span, SpanKind

logger = logging.getLogger(__name__)


class Tracer:
    """Hierarchical span-based tracer.

    Parameters
    ----------
    exporter:
        An exporter used to persist a finished query span tree.  May be
        ``None`` (trace data is kept only in memory).
    """

    def __init__(
        self,
        exporter: YAMLExporter | None = None,
    ) -> None:
        self._exporter = exporter
        self._callback_handler = TracerCallbackHandler()
        self._last_root: Optional[Span] = None

    # ------------------------------------------------------------------
    # Activation / deactivation
    # ------------------------------------------------------------------

    def activate(self) -> Token:
        """Push this tracer into the ``ContextVar`` so decorators find it."""
        return set_active_tracer(self)

    def deactivate(self, token: Token) -> None:
        reset_active_tracer(token)

    # ------------------------------------------------------------------
    # Span lifecycle
    # ------------------------------------------------------------------

    def start_span(
        self,
        kind: SpanKind,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> tuple[Span, Token]:
        """Create a new span and make it the *current* span.

        Returns ``(span, context_token)``; the token must be passed to
        :pymethod:`end_span` to restore the previous span.
        """
        span = Span(kind=kind, name=name)
        if attributes:
            span.attributes.update(attributes)

        parent = get_current_span()
        if parent is not None:
            parent.add_child(span)
        else:
            self._last_root = span

        token = set_current_span(span)
        return span, token

    def end_span(
        self,
        span: Span,
        token: Token,
        error: BaseException | None = None,
    ) -> None:
        span.finish(error=error)
        reset_current_span(token)

    @asynccontextmanager
    async def span(
        self,
        kind: SpanKind,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AsyncIterator[Span]:
        """Context-manager that wraps a block in a span of *kind*.

        Usage::

            async with tracer.span(SpanKind.STEP, "step_2"):
                outcome = await self._run_step(step)
        """
        span, token = self.start_span(kind, name, attributes)
        error: BaseException | None = None
        try:
            yield span
        except BaseException as exc:
            error = exc
            raise
        finally:
            self.end_span(span, token, error)

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export(self, root: Span | None = None) -> None:
        """Persist a finished span tree via the configured exporter."""
        root = root or self._last_root
        if self._exporter is None:
            logger.debug("No exporter configured, skipping trace export.")
            return
        if root is None:
            logger.warning("No root span recorded, nothing to export.")
            return
        self._exporter.export(root)

    @property
    def callback_handler(self) -> TracerCallbackHandler:
        """The LangChain callback handler managed by this tracer."""
        return self._callback_handler

    @property
    def last_root(self) -> Optional[Span]:
        return self._last_root
