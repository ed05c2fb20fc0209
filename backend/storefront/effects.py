# Overview: Post-commit side effects, run after the authoritative write succeeds.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from flask import current_app


@dataclass
class PostCommitEffects:
    """
    Ordered list of best-effort side effects (notifications).

    Effects are queued while a state transition is being applied and run only
    once it has been persisted. A failing effect is logged and never fails the
    caller or the remaining effects.
    """
    _effects: list[tuple[str, Callable[[], None]]] = field(default_factory=list)

    def add(self, name: str, effect: Callable[[], None]) -> None:
        self._effects.append((name, effect))

    def __len__(self) -> int:
        return len(self._effects)

    def run(self) -> list[str]:
        failed = []
        for name, effect in self._effects:
            try:
                effect()
            except Exception:
                current_app.logger.warning("Post-commit effect %s failed", name, exc_info=True)
                failed.append(name)
        self._effects.clear()
        return failed
