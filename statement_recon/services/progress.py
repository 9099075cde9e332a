from __future__ import annotations

import sys
from typing import Any

from tqdm import tqdm
from tqdm.std import tqdm as TqdmType

"""Progress display with tqdm (TTY only).

A single tqdm bar per long loop (row processing). In non-TTY environments
(CI, piped output) the bar is disabled entirely to avoid ANSI control
sequence spam in the logs.
"""

__all__ = [
    "ProgressTracker",
    "is_tty_enabled",
]


def is_tty_enabled() -> bool:
    """True if stdout is a TTY and progress should be displayed."""
    return sys.stdout.isatty()


class ProgressTracker:
    """Progress bar over a known number of items.

    ``enabled=None`` follows TTY detection; ``False`` always disables the bar;
    ``True`` enables it only when stdout is a TTY.
    """

    def __init__(
        self,
        total: int,
        *,
        description: str = "Processing",
        unit: str = "row",
        enabled: bool | None = None,
    ) -> None:
        self.total = total
        self.description = description
        self.current = 0

        tty = is_tty_enabled()
        self.enabled = tty if enabled is None else (enabled and tty)
        self.pbar: TqdmType[Any] | None
        if self.enabled:
            self.pbar = tqdm(
                total=total,
                desc=description,
                unit=unit,
                leave=False,
                ncols=80,
                ascii=True,
            )
        else:
            self.pbar = None

    def advance(self, n: int = 1) -> None:
        self.current += n
        if self.pbar is not None:
            self.pbar.update(n)

    def set_postfix(self, **kwargs: Any) -> None:
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
