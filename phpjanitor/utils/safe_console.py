"""Rich Console that degrades to ASCII on terminals without UTF-8."""
from typing import Any

from rich.console import Console

from .logger import is_utf8_capable, sanitize_for_terminal


class SafeConsole(Console):
    """Console used for reports, progress and log output.

    On a non-UTF-8 terminal, string arguments to print() have their icons
    swapped for ASCII and progress spinners fall back to ``line``.
    """

    def __init__(self, *args, **kwargs):
        self.ascii_only = not is_utf8_capable()
        if self.ascii_only:
            kwargs['legacy_windows'] = True
        super().__init__(*args, **kwargs)

    @property
    def spinner_name(self) -> str:
        return 'line' if self.ascii_only else 'dots'

    def print(self, *objects: Any, **kwargs) -> None:
        if self.ascii_only:
            objects = tuple(sanitize_for_terminal(o) if isinstance(o, str) else o for o in objects)
        super().print(*objects, **kwargs)
