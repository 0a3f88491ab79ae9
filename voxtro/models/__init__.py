from voxtro.models.action import BotAction
from voxtro.models.bot import Bot
from voxtro.models.conversation import Conversation
from voxtro.models.conversation_parameter import ConversationParameter
from voxtro.models.custom_parameter import CustomParameter
from voxtro.models.execution_log import ActionExecutionLog
from voxtro.models.faq import BotFAQ
from voxtro.models.form import BotForm
from voxtro.models.message import Message
from voxtro.models.outbox_task import OutboxTask
from voxtro.models.response_cache import ResponseCacheEntry
from voxtro.models.token_usage import TokenUsage

__all__ = [
    "Bot",
    "BotAction",
    "BotFAQ",
    "BotForm",
    "CustomParameter",
    "Conversation",
    "Message",
    "ConversationParameter",
    "ActionExecutionLog",
    "ResponseCacheEntry",
    "TokenUsage",
    "OutboxTask",
]
