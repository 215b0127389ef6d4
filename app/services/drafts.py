from dataclasses import dataclass
from typing import Dict, Optional
from structlog import get_logger
import time
import uuid

from app.config import settings
from app.schemas.session import UserSession
from app.services.editor import ListingDraftEditor

logger = get_logger()

class DraftNotFound(Exception):
    pass

@dataclass
class _Entry:
    editor: ListingDraftEditor
    owner_id: str
    touched_at: float

class DraftRegistry:
    """Open drafts for this process, keyed by draft id.

    Editors live only as long as the browser session that drives them; idle ones are
    pruned on a schedule, busy ones are kept until their upload or submission settles.
    """

    def __init__(self, ttl_seconds: int):
        self.ttl_seconds = ttl_seconds
        self._entries: Dict[str, _Entry] = {}

    def __len__(self):
        return len(self._entries)

    def open(self, session: UserSession, store, api) -> tuple[str, ListingDraftEditor]:
        draft_id = uuid.uuid4().hex
        editor = ListingDraftEditor(session, store, api)
        self._entries[draft_id] = _Entry(editor=editor, owner_id=session.id, touched_at=time.monotonic())
        logger.info("Opened draft", draft_id=draft_id, user_id=session.id)
        return draft_id, editor

    def get(self, draft_id: str, session: UserSession) -> ListingDraftEditor:
        entry = self._entries.get(draft_id)
        # Someone else's draft looks exactly like a missing one
        if entry is None or entry.owner_id != session.id:
            raise DraftNotFound(draft_id)
        entry.touched_at = time.monotonic()
        return entry.editor

    def discard(self, draft_id: str) -> bool:
        entry = self._entries.pop(draft_id, None)
        if entry is not None:
            logger.info("Discarded draft", draft_id=draft_id, user_id=entry.owner_id)
        return entry is not None

    def prune(self, now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        stale = [
            draft_id for draft_id, entry in self._entries.items()
            if now - entry.touched_at > self.ttl_seconds and not entry.editor.busy
        ]
        for draft_id in stale:
            del self._entries[draft_id]
        if stale:
            logger.info("Pruned idle drafts", pruned=len(stale), remaining=len(self._entries))
        return len(stale)

    def clear(self):
        self._entries.clear()

registry = DraftRegistry(settings.DRAFT_TTL_SECONDS)
