"""
Undo/Redo History.

Bounded action stacks for the builder session. Entities re-created by
undo or redo get new ids from the backend; the alias map lets older
entries keep resolving to the live entity.
"""

from typing import Dict, List, Optional

from ..models import BuilderAction


class ActionHistory:
    """Bounded undo/redo stacks with id aliasing."""

    def __init__(self, max_actions: int = 50):
        self.max_actions = max_actions
        self.undo_stack: List[BuilderAction] = []
        self.redo_stack: List[BuilderAction] = []
        self._aliases: Dict[str, str] = {}

    def record(self, action: BuilderAction) -> None:
        """Record a new user action; invalidates the redo stack."""
        self._push_undo(action)
        self.redo_stack.clear()

    def _push_undo(self, action: BuilderAction) -> None:
        self.undo_stack.append(action)
        if len(self.undo_stack) > self.max_actions:
            # Oldest entries fall off the bottom
            del self.undo_stack[: len(self.undo_stack) - self.max_actions]

    def last(self) -> Optional[BuilderAction]:
        return self.undo_stack[-1] if self.undo_stack else None

    def pop_undo(self) -> Optional[BuilderAction]:
        return self.undo_stack.pop() if self.undo_stack else None

    def pop_redo(self) -> Optional[BuilderAction]:
        return self.redo_stack.pop() if self.redo_stack else None

    def push_redo(self, action: BuilderAction) -> None:
        self.redo_stack.append(action)
        if len(self.redo_stack) > self.max_actions:
            del self.redo_stack[: len(self.redo_stack) - self.max_actions]

    def push_undo(self, action: BuilderAction) -> None:
        """Push onto the undo stack without touching redo (used by redo)."""
        self._push_undo(action)

    def can_undo(self) -> bool:
        return bool(self.undo_stack)

    def can_redo(self) -> bool:
        return bool(self.redo_stack)

    def alias(self, old_id: str, new_id: str) -> None:
        if old_id != new_id:
            self._aliases[old_id] = new_id

    def resolve(self, entity_id: str) -> str:
        """Follow aliases to the id of the live entity."""
        seen = set()
        while entity_id in self._aliases and entity_id not in seen:
            seen.add(entity_id)
            entity_id = self._aliases[entity_id]
        return entity_id

    def clear(self) -> None:
        self.undo_stack.clear()
        self.redo_stack.clear()
        self._aliases.clear()
