from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Row progress display with tqdm (TTY only).

Shown while a large batch is transformed or committed. In non-TTY
environments (pipes, CI) the bar is disabled so stdout stays parseable JSON.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """Check if TTY output is enabled.

    Returns:
        True if stderr is a TTY and progress should be displayed, False otherwise
    """
    return sys.stderr.isatty()


class ProgressTracker:
    """Row progress tracker.

    The processor calls ``advance()`` once per session row; the CLI reads
    ``processed`` afterwards regardless of whether a bar was drawn.
    """

    def __init__(
        self, total_rows: int, *, description: str = "Transforming rows", enabled: bool | None = None
    ) -> None:
        """Initialize progress tracker.

        Args:
            total_rows: Number of session rows that will be visited
            description: Description for the progress bar
            enabled: Force the bar on/off; defaults to TTY detection
        """
        self.total_rows = total_rows
        self.description = description
        self.processed = 0

        self.enabled = is_tty_enabled() if enabled is None else enabled
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total_rows,
                desc=description,
                unit="row",
                file=sys.stderr,
                leave=False,
                ncols=80,
                ascii=True,
                mininterval=0.5,
            )
        else:
            self.pbar = None

    def advance(self, count: int = 1) -> None:
        self.processed += count
        if self.pbar is not None:
            self.pbar.update(count)

    def set_postfix(self, **kwargs: Any) -> None:
        """Set postfix information (stats) on the progress bar."""
        if self.pbar is not None:
            self.pbar.set_postfix(**kwargs)

    def close(self) -> None:
        if self.pbar is not None:
            self.pbar.close()
            self.pbar = None

    def __enter__(self) -> ProgressTracker:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
