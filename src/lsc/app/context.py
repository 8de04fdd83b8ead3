"""Per-invocation dependencies handed to every command handler."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from rich.console import Console

from lsc.app.format import make_console
from lsc.config.settings import Config


@dataclass
class AppContext:
    """Store handle, output mode and consoles for one CLI run."""

    store: Any
    config: Config
    as_json: bool = False
    console: Console = field(default_factory=lambda: make_console(color=False))
    err_console: Console = field(default_factory=lambda: make_console(color=False, stderr=True))
    cancel: threading.Event = field(default_factory=threading.Event)

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
