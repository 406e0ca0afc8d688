from typing import List, Union

from aws_lambda_powertools import Logger

from chat_lambda.llm import LLMProvider
from chat_lambda.models import (
    AnyChatRequest,
    ConversationTurn,
    GetHistoryRequest,
    HistoryResponse,
    ResetRequest,
    ResetResponse,
    SendMessageRequest,
    SendMessageResponse,
)
from chat_lambda.repository import ConversationStore

logger: Logger = Logger(child=True)

WELCOME_MESSAGE: str = (
    "Hello! I'm your AI assistant. How can I help you today?"
)
RESET_SUCCESS_MESSAGE: str = "Chat history reset successfully"
RESET_FAILURE_MESSAGE: str = "Failed to reset chat history"

ChatResponse = Union[ResetResponse, HistoryResponse, SendMessageResponse]


class ChatService:
    def __init__(
        self,
        conversation_store: ConversationStore,
        llm_provider: LLMProvider,
    ):
        self.conversation_store: ConversationStore = conversation_store
        self.llm_provider: LLMProvider = llm_provider

    def handle(self, request: AnyChatRequest) -> ChatResponse:
        if isinstance(request, ResetRequest):
            return self.reset(request)
        if isinstance(request, GetHistoryRequest):
            return self.get_history(request)
        return self.send_message(request)

    def reset(self, request: ResetRequest) -> ResetResponse:
        success: bool = self.conversation_store.clear_history(request.user_id)
        logger.info(f"Reset history for {request.user_id}: {success}")
        return ResetResponse(
            success=success,
            message=RESET_SUCCESS_MESSAGE if success else RESET_FAILURE_MESSAGE,
        )

    def get_history(self, request: GetHistoryRequest) -> HistoryResponse:
        history: List[ConversationTurn] = (
            self.conversation_store.fetch_history(request.user_id)
        )
        if not history:
            welcome_turn: ConversationTurn = (
                self.conversation_store.append_turn(
                    request.user_id, "", WELCOME_MESSAGE
                )
            )
            logger.info(f"Created welcome turn for {request.user_id}")
            history = [welcome_turn]

        return HistoryResponse(history=history)

    def send_message(self, request: SendMessageRequest) -> SendMessageResponse:
        conversation_history: List[ConversationTurn] = (
            self.conversation_store.fetch_history(request.user_id)
        )

        reply: str = self.llm_provider.generate_reply(
            request.message, conversation_history
        )

        self.conversation_store.append_turn(
            request.user_id, request.message, reply
        )

        return SendMessageResponse(message=reply)

