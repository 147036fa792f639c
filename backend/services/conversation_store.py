"""Conversation store: a keyed, append-only message log per user."""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
from supabase import Client

from models.conversation import Conversation, Message, utc_now
from errors import PersistenceError
from services.database import get_client
from config import CONVERSATIONS_TABLE, MESSAGES_TABLE

logger = logging.getLogger(__name__)


class ConversationStore(ABC):
    """Find-or-create and append operations over per-user conversations."""

    @abstractmethod
    def find_or_create(self, user_id: str) -> Conversation:
        """
        Look up the conversation of a user.

        A missing conversation is returned empty and is not written until
        the first append.

        Args:
            user_id: Opaque user identifier

        Returns:
            Working copy of the conversation

        Raises:
            PersistenceError: If the backend is unavailable
        """

    @abstractmethod
    def append(self, conversation: Conversation, messages: List[Message]) -> None:
        """
        Append messages, in order, to the end of a stored conversation.

        The caller's working copy is extended as well.

        Args:
            conversation: Conversation returned by find_or_create
            messages: Messages to append

        Raises:
            PersistenceError: If the backend is unavailable
        """


class InMemoryConversationStore(ConversationStore):
    """Conversation store kept in process memory."""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}
        self._lock = threading.Lock()
        logger.info("InMemoryConversationStore initialized")

    def find_or_create(self, user_id: str) -> Conversation:
        with self._lock:
            stored = self._conversations.get(user_id)
            if stored is None:
                logger.info(f"Created new conversation for user {user_id}")
                return Conversation(user_id=user_id)

            logger.info(f"Found conversation for user {user_id} with {len(stored.messages)} messages")
            return Conversation(
                user_id=stored.user_id,
                messages=list(stored.messages),
                created_at=stored.created_at,
                updated_at=stored.updated_at,
                persisted=True
            )

    def append(self, conversation: Conversation, messages: List[Message]) -> None:
        with self._lock:
            stored = self._conversations.get(conversation.user_id)
            if stored is None:
                stored = Conversation(
                    user_id=conversation.user_id,
                    created_at=conversation.created_at,
                    persisted=True
                )
                self._conversations[conversation.user_id] = stored

            stored.messages.extend(messages)
            stored.updated_at = utc_now()

        conversation.messages.extend(messages)
        conversation.updated_at = stored.updated_at
        conversation.persisted = True
        logger.info(f"Appended {len(messages)} messages to conversation of user {conversation.user_id}")


class SupabaseConversationStore(ConversationStore):
    """Conversation store backed by Supabase PostgreSQL.

    Uses a `conversations` table keyed by `user_id` and a `messages` table
    holding one row per message.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        conversations_table: str = CONVERSATIONS_TABLE,
        messages_table: str = MESSAGES_TABLE
    ):
        """
        Initialize the store.

        Args:
            client: Supabase client (defaults to the shared cached connection,
                resolved on first use)
            conversations_table: Name of the conversations table
            messages_table: Name of the messages table
        """
        self._client = client
        self.conversations_table = conversations_table
        self.messages_table = messages_table
        logger.info(f"SupabaseConversationStore initialized with tables: {conversations_table}, {messages_table}")

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_client()
        return self._client

    def find_or_create(self, user_id: str) -> Conversation:
        try:
            result = self.client.table(self.conversations_table).select("*").eq("user_id", user_id).execute()

            if not result.data:
                logger.info(f"Created new conversation for user {user_id}")
                return Conversation(user_id=user_id)

            conv_data = result.data[0]
            messages = self._get_messages(user_id)
            logger.info(f"Found conversation for user {user_id} with {len(messages)} messages")

            return Conversation(
                user_id=conv_data["user_id"],
                messages=messages,
                created_at=self._parse_timestamp(conv_data["created_at"]),
                updated_at=self._parse_timestamp(conv_data["updated_at"]),
                persisted=True
            )
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Error retrieving conversation for user {user_id}: {e}")
            raise PersistenceError(
                f"Could not load conversation: {e}",
                details={"user_id": user_id}
            ) from e

    def append(self, conversation: Conversation, messages: List[Message]) -> None:
        updated_at = utc_now()

        try:
            if not conversation.persisted:
                # Insert-only: an existing row keeps its created_at
                self.client.table(self.conversations_table).upsert({
                    "user_id": conversation.user_id,
                    "created_at": conversation.created_at.isoformat(),
                    "updated_at": updated_at.isoformat()
                }, on_conflict="user_id", ignore_duplicates=True).execute()

            if messages:
                self.client.table(self.messages_table).insert([
                    {"user_id": conversation.user_id, **message.to_record()}
                    for message in messages
                ]).execute()

            self.client.table(self.conversations_table).update({
                "updated_at": updated_at.isoformat()
            }).eq("user_id", conversation.user_id).execute()
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Error appending to conversation of user {conversation.user_id}: {e}")
            raise PersistenceError(
                f"Could not append messages: {e}",
                details={"user_id": conversation.user_id, "message_count": len(messages)}
            ) from e

        conversation.messages.extend(messages)
        conversation.updated_at = updated_at
        conversation.persisted = True
        logger.info(f"Appended {len(messages)} messages to conversation of user {conversation.user_id}")

    def _get_messages(self, user_id: str) -> List[Message]:
        """
        Retrieve the messages of a user in chronological order.

        Args:
            user_id: Opaque user identifier

        Returns:
            List of Message objects ordered by timestamp
        """
        result = (
            self.client.table(self.messages_table)
            .select("*")
            .eq("user_id", user_id)
            .order("timestamp", desc=False)
            .order("id", desc=False)
            .execute()
        )

        return [
            Message(
                role=m["role"],
                content=m["content"],
                timestamp=self._parse_timestamp(m["timestamp"])
            )
            for m in (result.data or [])
        ]

    @staticmethod
    def _parse_timestamp(timestamp_str: str) -> datetime:
        """
        Parse timestamp string from Supabase, handling various formats.

        Supabase can return timestamps with varying microsecond precision,
        which Python's fromisoformat() can't always handle. This method
        normalizes the fractional part to six digits.

        Args:
            timestamp_str: Timestamp string from Supabase

        Returns:
            datetime object
        """
        # Replace 'Z' with '+00:00' for timezone
        timestamp_str = timestamp_str.replace("Z", "+00:00")

        # Format: 2026-02-21T02:08:26.18976+00:00
        if "." in timestamp_str:
            head, tail = timestamp_str.split(".", 1)
            for sign in ("+", "-"):
                if sign in tail:
                    fraction, tz = tail.split(sign, 1)
                    timestamp_str = f"{head}.{fraction[:6].ljust(6, '0')}{sign}{tz}"
                    break
            else:
                timestamp_str = f"{head}.{tail[:6].ljust(6, '0')}"

        return datetime.fromisoformat(timestamp_str)


def create_conversation_store(backend: str) -> ConversationStore:
    """
    Build the conversation store selected by configuration.

    Args:
        backend: "supabase" or "memory"

    Returns:
        ConversationStore instance
    """
    if backend == "supabase":
        return SupabaseConversationStore()
    if backend == "memory":
        return InMemoryConversationStore()
    raise ValueError(f"Unknown conversation store backend: {backend}")
