"""Import all models so Alembic can discover them via Base.metadata."""
from challenge_messaging.infrastructure.db.models.conversation import ConversationModel
from challenge_messaging.infrastructure.db.models.membership import ConversationMemberModel
from challenge_messaging.infrastructure.db.models.message import MessageModel
from challenge_messaging.infrastructure.db.models.outbox import OutboxMessageModel

__all__ = [
    "ConversationMemberModel",
    "ConversationModel",
    "MessageModel",
    "OutboxMessageModel",
]
