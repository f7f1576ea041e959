"""YAML exporter for trace data.

Writes one file per finished query span tree, named after the chat and the
time the query started.
"""

import logging
import os
import re
from pathlib import Path

import yaml

from wassist.tracer.span import Span

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class YAMLExporter:
    def __init__(self, output_dir: Path | str) -> None:
        self.output_dir = Path(output_dir)
        os.makedirs(self.output_dir, exist_ok=True)

    def filename_for(self, root_span: Span) -> str:
        ts = root_span.start_time.strftime("%Y%m%d_%H%M%S_%f")
        chat_id = root_span.chat_id
        if chat_id:
            return f"trace_{_UNSAFE.sub('_', str(chat_id))}_{ts}.yaml"
        return f"trace_{ts}.yaml"

    def export(self, root_span: Span, filename: str | None = None) -> Path:
        """Serialize *root_span* to a YAML file and return its path."""
        path = self.output_dir / (filename or self.filename_for(root_span))
        with open(path, "w", encoding="utf-8") as fh:
            yaml.safe_dump(
                root_span.to_dict(),
                fh,
                default_flow_style=False,
                allow_unicode=True,
                sort_keys=False,
            )
        logger.info("Trace exported to %s", path)
        return path
