import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterator, Optional

TOKEN_FIELDS = ("prompt_tokens", "completion_tokens", "total_tokens")


class SpanKind(str, Enum):
    """Hierarchy level of a span inside a query trace.

    A query trace nests as::

        QUERY  →  PLAN | STEP  →  TOOL_CALL  →  LLM_CALL

    Single-step queries have no STEP spans; their tool calls and model turns
    nest directly under the query.
    """

    QUERY = "query"
    PLAN = "plan"
    STEP = "step"
    TOOL_CALL = "tool_call"
    LLM_CALL = "llm_call"


class SpanStatus(str, Enum):
    OK = "ok"
    ERROR = "error"
    # The awaited work was cancelled, typically by a loop or plan timeout.
    CANCELLED = "cancelled"


def _short_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class Span:
    """One node of a query trace."""

    kind: SpanKind
    name: str
    span_id: str = field(default_factory=_short_id)
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    duration_ms: Optional[float] = None
    status: SpanStatus = SpanStatus.OK
    error: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)
    children: list['Span'] = field(default_factory=list)
    parent: Optional['Span'] = field(default=None, repr=False)

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def add_child(self, child: 'Span') -> None:
        child.parent = self
        self.children.append(child)

    def fail(self, error: BaseException | str) -> None:
        if isinstance(error, asyncio.CancelledError):
            self.status = SpanStatus.CANCELLED
            self.error = "cancelled"
            return
        self.status = SpanStatus.ERROR
        self.error = (str(error) or type(error).__name__) if isinstance(error, BaseException) else error

    def finish(self, error: BaseException | None = None) -> None:
        self.end_time = datetime.now()
        self.duration_ms = (self.end_time - self.start_time).total_seconds() * 1000
        if error is not None:
            self.fail(error)

    @property
    def root(self) -> 'Span':
        span = self
        while span.parent is not None:
            span = span.parent
        return span

    @property
    def chat_id(self) -> str | None:
        """Chat the traced query belongs to, recorded on the query span."""
        return self.root.attributes.get("chat_id")

    def walk(self) -> Iterator['Span']:
        """This span and all its descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def token_usage(self) -> dict[str, int]:
        """Token counts summed over every model call under this span."""
        totals = dict.fromkeys(TOKEN_FIELDS, 0)
        for span in self.walk():
            usage = span.attributes.get("token_usage") if span.kind == SpanKind.LLM_CALL else None
            for key in TOKEN_FIELDS:
                totals[key] += (usage or {}).get(key) or 0
        return totals

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "kind": self.kind.value,
            "name": self.name,
            "span_id": self.span_id,
            "start_time": self.start_time.isoformat(),
        }
        if self.end_time is not None:
            d["end_time"] = self.end_time.isoformat()
        if self.duration_ms is not None:
            d["duration_ms"] = round(self.duration_ms, 2)
        d["status"] = self.status.value
        if self.error is not None:
            d["error"] = self.error
        if self.attributes:
            d["attributes"] = self.attributes
        if self.kind == SpanKind.QUERY:
            usage = self.token_usage()
            if usage["total_tokens"]:
                d["token_usage"] = usage
        if self.children:
            d["children"] = [c.to_dict() for c in self.children]
        return d
