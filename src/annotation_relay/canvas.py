from __future__ import annotations

from pathlib import Path

from .protocol.messages import StrokePoint
from .server.rendering import render_strokes


class Canvas:
    """
    Headless drawing surface used as the annotation sink by the tools.

    clear / undo / redo only affect this participant; nothing is signaled.
    """

    def __init__(self, width: int = 1024, height: int = 768) -> None:
        self.width = width
        self.height = height
        self.strokes: list[list[StrokePoint]] = []
        self._undone: list[list[StrokePoint]] = []

    def add_stroke(self, points: list[StrokePoint]) -> None:
        self.strokes.append(list(points))
        self._undone.clear()

    def clear(self) -> None:
        self.strokes.clear()
        self._undone.clear()

    def undo(self) -> bool:
        if not self.strokes:
            return False
        self._undone.append(self.strokes.pop())
        return True

    def redo(self) -> bool:
        if not self._undone:
            return False
        self.strokes.append(self._undone.pop())
        return True

    def save_png(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        render_strokes(self.strokes, width=self.width, height=self.height).save(path, format="PNG")
