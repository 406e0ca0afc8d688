import os
from dataclasses import dataclass
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest

os.environ.setdefault("TABLE_NAME", "chatgpt-chats-test")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "chat-api")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from chat_lambda.llm import LLMProvider, LLMProviderStrategy  # noqa: E402
from chat_lambda.models import LLMInputMessage, LLMResponse  # noqa: E402
from chat_lambda.repository import ConversationStore  # noqa: E402


class InMemoryRepository:
    """Partitioned turn storage without a batch delete primitive."""

    def __init__(self):
        self.partitions: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.deleted_keys: List[Dict[str, str]] = []

    def query_turns(self, user_id: str) -> List[Dict[str, Any]]:
        partition = self.partitions.get(user_id, {})
        return [dict(partition[chat_id]) for chat_id in sorted(partition)]

    def query_turn_keys(self, user_id: str) -> List[Dict[str, str]]:
        return [
            {"userId": item["userId"], "chatId": item["chatId"]}
            for item in self.query_turns(user_id)
        ]

    def put_turn(self, item: Dict[str, Any]) -> None:
        self.partitions.setdefault(item["userId"], {})[item["chatId"]] = dict(
            item
        )

    def delete_turn(self, key: Dict[str, str]) -> None:
        self.deleted_keys.append(key)
        self.partitions.get(key["userId"], {}).pop(key["chatId"], None)


class RecordingStrategy(LLMProviderStrategy):
    """Returns a canned reply and records every prompt it receives."""

    def __init__(self, reply: str = "Hi there!"):
        super().__init__("test-model", None)
        self.reply: str = reply
        self.prompts: List[List[LLMInputMessage]] = []

    def invoke_llm(self, messages: List[LLMInputMessage]) -> LLMResponse:
        self.prompts.append(list(messages))
        return LLMResponse(content=self.reply, model=self.model_id)


def make_http_response(status_code, body=None, text=None):
    response = MagicMock()
    response.status_code = status_code
    response.text = text if text is not None else str(body)
    if body is None:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = body
    return response


class SteppingClock:
    def __init__(self, start: float = 1_700_000_000.0, step: float = 1.0):
        self.now: float = start
        self.step: float = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current


@dataclass
class FakeLambdaContext:
    function_name: str = "chatgpt-backend"
    memory_limit_in_mb: int = 512
    invoked_function_arn: str = (
        "arn:aws:lambda:us-west-2:123456789012:function:chatgpt-backend"
    )
    aws_request_id: str = "52fdfc07-2182-154f-163f-5f0f9a621d72"


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def conversation_store(repository) -> ConversationStore:
    return ConversationStore(repository, clock=SteppingClock())


@pytest.fixture
def strategy() -> RecordingStrategy:
    return RecordingStrategy()


@pytest.fixture
def llm_provider(strategy) -> LLMProvider:
    return LLMProvider(strategy)


@pytest.fixture
def lambda_context() -> FakeLambdaContext:
    return FakeLambdaContext()
