"""
esingest Loader — Streaming JSONL Files into an Ingester
========================================================

Reads JSON lines from files, turns each record into an Operation and
feeds it to a BulkIngester.

Design principles:
    - Stream processing: never load an entire file into memory
    - Bad lines are counted, not fatal
    - Progress reporting every N records
    - Results come back through the ingester's listener

Typical usage:
    loader = JsonlLoader(ingester, index_name="corpus")
    stats = loader.load("data/**/*.jsonl")
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional

from .exceptions import CapacityExceeded, OperationRejected
from .ingester import BulkIngester
from .operations import Operation


logger = logging.getLogger(__name__)

# Turns a raw record into an operation, or None to skip it
RecordConverter = Callable[[dict, str], Optional[Operation]]


def default_converter(rec: dict, index_name: str) -> Optional[Operation]:
    """
    Index the record as-is, using its "id" field (if any) as document id.

    Args:
        rec: Raw JSON record
        index_name: Target index

    Returns:
        An index operation, or None for non-object lines
    """
    if not isinstance(rec, dict):
        return None
    doc_id = rec.get("id")
    return Operation.index_doc(
        index_name,
        rec,
        id=str(doc_id) if doc_id is not None else None,
        context=doc_id
    )


def find_files(pattern: str) -> List[Path]:
    """Files matching a glob pattern; "**" recurses."""
    path = Path(pattern)
    anchor = Path(path.anchor) if path.is_absolute() else Path(".")
    relative = path.relative_to(anchor) if path.is_absolute() else path
    return sorted(p for p in anchor.glob(str(relative)) if p.is_file())


class JsonlLoader:
    """
    Feeds JSONL records into a BulkIngester.

    The loader only enqueues; call ingester.close() (or use the ingester as
    a context manager) to wait for everything to be sent.
    """

    def __init__(
        self,
        ingester: BulkIngester,
        index_name: str,
        converter: RecordConverter = default_converter,
        progress_interval: int = 100_000,
        echo: Callable[[str], Any] = print,
        backpressure_wait: float = 0.05
    ):
        """
        Args:
            ingester: Destination for the operations
            index_name: Target index passed to the converter
            converter: Record -> Operation function
            progress_interval: Records between progress reports
            echo: Where progress lines go
            backpressure_wait: Seconds to wait when the ingester is at capacity
        """
        self.ingester = ingester
        self.index_name = index_name
        self.converter = converter
        self.progress_interval = progress_interval
        self.echo = echo
        self.backpressure_wait = backpressure_wait
        self.backpressure_waits = 0

    def iter_operations(self, files: List[Path], limit: Optional[int] = None,
                        stats: Optional[dict] = None) -> Iterator[Operation]:
        """Yield one operation per usable line; bad lines bump stats["errors"]."""
        stats = stats if stats is not None else {"records": 0, "errors": 0, "files": 0}
        for filepath in files:
            with open(filepath, 'r', encoding='utf-8') as f:
                for line_no, line in enumerate(f, 1):
                    if not line.strip():
                        continue
                    try:
                        op = self.converter(json.loads(line), self.index_name)
                    except (json.JSONDecodeError, OperationRejected) as e:
                        logger.debug("%s:%d skipped: %s", filepath, line_no, e)
                        stats["errors"] += 1
                        continue
                    if op is None:
                        continue
                    stats["records"] += 1
                    yield op
                    if limit and stats["records"] >= limit:
                        stats["files"] += 1
                        return
            stats["files"] += 1

    def load(self, pattern: str, limit: Optional[int] = None) -> dict:
        """
        Enqueue every record from files matching `pattern`.

        Args:
            pattern: Glob pattern for files (e.g., "data/**/*.jsonl")
            limit: Stop after N records (for testing)

        Returns:
            Load statistics dict
        """
        files = find_files(pattern)
        self.echo(f"Found {len(files)} files matching pattern")
        return self.load_files(files, limit=limit)

    def load_files(self, files: List[Path], limit: Optional[int] = None) -> dict:
        stats = {"records": 0, "errors": 0, "files": 0}
        start_time = time.time()

        for op in self.iter_operations(files, limit=limit, stats=stats):
            self._add(op)
            if stats["records"] % self.progress_interval == 0:
                elapsed = time.time() - start_time
                rate = stats["records"] / elapsed if elapsed > 0 else 0
                self.echo(
                    f"[{datetime.now().strftime('%H:%M:%S')}] "
                    f"{stats['records']:,} records | "
                    f"{rate:,.0f} rec/sec"
                )

        elapsed = time.time() - start_time
        return {
            "total_records": stats["records"],
            "total_errors": stats["errors"],
            "files_processed": stats["files"],
            "elapsed_seconds": elapsed,
            "rate_per_second": stats["records"] / elapsed if elapsed > 0 else 0
        }

    def _add(self, op: Operation) -> None:
        # The ingester fails fast at capacity; the loader is the one that slows down
        while True:
            try:
                self.ingester.add(op)
                return
            except CapacityExceeded as e:
                if e.pending_bytes == 0:
                    # Larger than the ceiling on its own; waiting won't help
                    raise
                self.backpressure_waits += 1
                time.sleep(self.backpressure_wait)
