"""Mapping of UI slots to conversation contexts."""

from __future__ import annotations

import logging
import uuid

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns slot -> context id and context id -> project path.

    A context id is created the first time a slot asks for one and stays
    the same until the slot is cleared.
    """

    def __init__(self):
        self._contexts: dict[str, str] = {}
        self._project_paths: dict[str, str] = {}

    def context_for(self, slot_id: str) -> str:
        """Return the context id of ``slot_id``, creating it on first use."""
        context_id = self._contexts.get(slot_id)
        if context_id is None:
            context_id = str(uuid.uuid4())
            self._contexts[slot_id] = context_id
            logger.debug(f"Created context {context_id} for slot '{slot_id}'")
        return context_id

    def set_project_path(self, context_id: str, path: str) -> None:
        self._project_paths[context_id] = path

    def project_path_for(self, context_id: str) -> str | None:
        return self._project_paths.get(context_id)

    def clear(self, slot_id: str) -> None:
        """Forget the slot's context and that context's project path."""
        context_id = self._contexts.pop(slot_id, None)
        if context_id is not None:
            self._project_paths.pop(context_id, None)
            logger.debug(f"Cleared context {context_id} of slot '{slot_id}'")

    def active_slots(self) -> list[str]:
        return list(self._contexts)
