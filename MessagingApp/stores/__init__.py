from MessagingApp.stores.conversations import ConversationStore
from MessagingApp.stores.messages import MessageStore

__all__ = ["ConversationStore", "MessageStore"]
