import uuid
import logging
from typing import Any, Dict, Optional
from export_assistant.core.cache import BoundedTTLCache
from export_assistant.core.config import Settings, settings as default_settings
from export_assistant.core.locks import KeyedLocks
from export_assistant.repositories.base import USER_CONTEXTS, PersistenceStore
from export_assistant.schemas.context import SessionState, UserContext, UserPreferences
from export_assistant.schemas.conversation import Message, MessageAuthor
from export_assistant.schemas.base import utc_now
from export_assistant.utils.text import extract_keywords

logger = logging.getLogger("context_service")

MAX_SEARCH_QUERIES = 20


class ContextService:
    """Owns the UserContext lifecycle.

    Active contexts are cached per (user, conversation) with an idle TTL and
    written through to the store on every change. The store holds the latest
    context per user, so a returning user keeps their profile and preferences
    across conversations.
    """

    def __init__(self, store: PersistenceStore, config: Settings = None):
        self.store = store
        self.config = config or default_settings
        self.contexts: BoundedTTLCache[UserContext] = BoundedTTLCache(
            self.config.context_cache_capacity,
            ttl_seconds=self.config.context_idle_ttl_seconds,
        )
        self.locks = KeyedLocks()

    def _cached(self, user_id: str, conversation_id: Optional[str]) -> Optional[UserContext]:
        if conversation_id is not None:
            return self.contexts.get((user_id, conversation_id))
        # No conversation given: the user's most recently used one
        latest = None
        for (uid, _), context in self.contexts.items():
            if uid == user_id:
                latest = context
        if latest is not None:
            self.contexts.get((user_id, latest.conversation_id))
        return latest

    async def get_context(self, user_id: str, conversation_id: Optional[str] = None) -> UserContext:
        context = self._cached(user_id, conversation_id)
        if context is not None:
            context.current_session.last_activity = utc_now()
            return context

        context = await self._load(user_id)
        if context is None:
            context = UserContext(user_id=user_id, conversation_id=conversation_id or str(uuid.uuid4()))
            logger.info(f"Created context for {user_id} in conversation {context.conversation_id}")
        else:
            # A reload starts a new session; history belongs to the conversation it came from
            if conversation_id and context.conversation_id != conversation_id:
                context.conversation_id = conversation_id
                context.history = []
            context.current_session = SessionState()
        self.contexts.set((user_id, context.conversation_id), context)
        return context

    async def _load(self, user_id: str) -> Optional[UserContext]:
        try:
            records = await self.store.load_by_user_id(USER_CONTEXTS, user_id)
        except Exception as e:
            logger.error(f"Failed to load context for {user_id}: {e}")
            return None
        if not records:
            return None
        try:
            return UserContext.model_validate(records[0])
        except ValueError as e:
            logger.warning(f"Discarding unreadable stored context for {user_id}: {e}")
            return None

    async def save(self, context: UserContext) -> None:
        try:
            await self.store.save(USER_CONTEXTS, context.model_dump(mode="json"))
        except Exception as e:
            logger.error(f"Failed to persist context for {context.user_id}: {e}")

    def append_message(self, context: UserContext, message: Message) -> None:
        context.append_message(message, self.config.chat_history_limit)
        session = context.current_session
        if message.author == MessageAuthor.USER:
            session.search_queries.extend(extract_keywords(message.text))
            del session.search_queries[:-MAX_SEARCH_QUERIES]
        if message.intent is not None:
            session.actions_performed.append(f"intent_{message.intent.name.value.lower()}")
        session.last_activity = utc_now()

    async def update_profile(self, user_id: str, updates: Dict[str, Any],
                             conversation_id: Optional[str] = None) -> UserContext:
        async with self.locks(user_id):
            context = await self.get_context(user_id, conversation_id)
            context.business_profile = context.business_profile.model_copy(update=updates)
            await self.save(context)
            return context

    async def update_preferences(self, user_id: str, updates: Dict[str, Any],
                                 conversation_id: Optional[str] = None) -> UserContext:
        async with self.locks(user_id):
            context = await self.get_context(user_id, conversation_id)
            updates = dict(updates)
            merged = context.preferences.model_dump()
            privacy = updates.pop("data_privacy", None) or {}
            merged.update(updates)
            merged["data_privacy"].update(privacy)
            context.preferences = UserPreferences.model_validate(merged)
            await self.save(context)
            return context

    async def navigate(self, user_id: str, page: str, conversation_id: Optional[str] = None):
        """Move the session to `page`. Returns the context and the page left behind."""
        async with self.locks(user_id):
            context = await self.get_context(user_id, conversation_id)
            previous = context.current_session.current_page
            context.current_session.visit(page)
            await self.save(context)
            return context, previous

    async def reset(self, user_id: str) -> None:
        async with self.locks(user_id):
            for key, _ in self.contexts.items():
                if key[0] == user_id:
                    self.contexts.pop(key)
            try:
                await self.store.delete_by_user_id(USER_CONTEXTS, user_id)
            except Exception as e:
                logger.error(f"Failed to delete stored context for {user_id}: {e}")
            logger.info(f"Context reset for {user_id}")
