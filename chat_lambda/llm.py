from abc import ABC, abstractmethod
from typing import Any, Dict, List, Union

import requests
from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError
from langchain_aws import ChatBedrockConverse
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from chat_lambda.models import (
    ConversationTurn,
    LLMInputMessage,
    LLMResponse,
    LLMUsage,
)

logger: Logger = Logger(child=True)

SYSTEM_PROMPT: str = "You are a helpful assistant. Be concise and friendly."
MAX_TOKENS: int = 300
TEMPERATURE: float = 0.7

OPENAI_API_URL: str = "https://api.openai.com/v1/chat/completions"

NO_CHOICES_REPLY: str = "Sorry, I could not generate a response."
MALFORMED_RESPONSE_REPLY: str = (
    "Sorry, I encountered an error processing your request."
)
CONNECTION_ERROR_REPLY: str = "Sorry, I could not connect to the AI service."


class CompletionServiceError(Exception):
    """Base class for failures talking to the completion service."""


class CompletionHTTPError(CompletionServiceError):
    def __init__(self, status_code: int, detail: str):
        super().__init__(f"HTTP {status_code}: {detail}")
        self.status_code: int = status_code
        self.detail: str = detail


class CompletionResponseError(CompletionServiceError):
    pass


class CompletionEmptyError(CompletionServiceError):
    pass


class CompletionConnectionError(CompletionServiceError):
    pass


class LLMProviderStrategy(ABC):
    def __init__(self, model_id: str, client: Any):
        self.model_id: str = model_id
        self.client: Any = client

    @abstractmethod
    def invoke_llm(self, messages: List[LLMInputMessage]) -> LLMResponse:
        raise NotImplementedError


class OpenAIChatCompletionsStrategy(LLMProviderStrategy):
    """Single POST to the chat completions endpoint, no retries.

    ``client`` is a ``requests.Session`` (or anything with a compatible
    ``post``).
    """

    def __init__(
        self,
        model_id: str,
        client: Any,
        api_key: str = "",
        api_url: str = OPENAI_API_URL,
        timeout: float = 25.0,
    ):
        super().__init__(model_id, client)
        self.api_key: str = api_key
        self.api_url: str = api_url
        self.timeout: float = timeout

    def invoke_llm(self, messages: List[LLMInputMessage]) -> LLMResponse:
        logger.info(f"OpenAI Strategy: Invoking model {self.model_id}")

        payload: Dict[str, Any] = {
            "model": self.model_id,
            "messages": [message.model_dump() for message in messages],
            "max_tokens": MAX_TOKENS,
            "temperature": TEMPERATURE,
        }

        try:
            response: requests.Response = self.client.post(
                self.api_url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise CompletionConnectionError(str(e)) from e

        logger.info(f"OpenAI Response Status: {response.status_code}")
        logger.debug(f"OpenAI Response Body: {response.text}")

        try:
            body: Dict[str, Any] = response.json()
        except ValueError as e:
            raise CompletionResponseError(
                f"Response body is not valid JSON: {response.text!r}"
            ) from e

        if response.status_code != 200:
            error: Any = body.get("error") if isinstance(body, dict) else None
            detail: str = (
                error.get("message") if isinstance(error, dict) else None
            ) or "Unknown error"
            raise CompletionHTTPError(response.status_code, detail)

        try:
            choices: List[Dict[str, Any]] = body.get("choices") or []
            if not choices:
                raise CompletionEmptyError(f"No choices in response: {body}")
            content: str = choices[0]["message"]["content"].strip()
            usage: Dict[str, int] = body.get("usage") or {}
            return LLMResponse(
                content=content,
                usage=LLMUsage(
                    input_tokens=usage.get("prompt_tokens", 0),
                    output_tokens=usage.get("completion_tokens", 0),
                ),
                model=body.get("model", self.model_id),
            )
        except (AttributeError, KeyError, TypeError, ValidationError) as e:
            raise CompletionResponseError(
                f"Unexpected response shape: {body}"
            ) from e


class LangchainBedrockConverseStrategy(LLMProviderStrategy):
    def invoke_llm(self, messages: List[LLMInputMessage]) -> LLMResponse:
        logger.info(f"LangChain Strategy: Invoking model {self.model_id}")

        try:
            chat = ChatBedrockConverse(
                model=self.model_id,
                client=self.client,
                region_name=self.client.meta.region_name,
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
            )

            langchain_messages: List[
                Union[SystemMessage, HumanMessage, AIMessage]
            ] = []
            for msg in messages:
                if msg.role == "system":
                    langchain_messages.append(
                        SystemMessage(content=msg.content)
                    )
                elif msg.role == "user":
                    langchain_messages.append(
                        HumanMessage(content=msg.content)
                    )
                elif msg.role == "assistant":
                    langchain_messages.append(
                        AIMessage(content=msg.content)
                    )

            response: AIMessage = chat.invoke(langchain_messages)

            content: Union[str, List[Union[str, Dict[Any, Any]]]] = (
                response.content
            )
            if not isinstance(content, str):
                content = "".join(
                    part if isinstance(part, str) else part.get("text", "")
                    for part in content
                )
            if not content.strip():
                raise CompletionEmptyError(
                    "Bedrock returned an empty message"
                )

            usage_metadata: Dict[str, int] = (
                response.response_metadata.get("usage", {})
            )

            return LLMResponse(
                content=content.strip(),
                usage=LLMUsage(
                    input_tokens=usage_metadata.get("inputTokens", 0),
                    output_tokens=usage_metadata.get("outputTokens", 0),
                ),
                model=self.model_id,
            )

        except CompletionServiceError:
            raise
        except (ClientError, BotoCoreError) as e:
            logger.exception("Error invoking Bedrock via LangChain")
            raise CompletionConnectionError(str(e)) from e
        except Exception as e:
            logger.exception("Error invoking Bedrock via LangChain")
            raise CompletionResponseError(str(e)) from e


class LLMProviderFactory:
    def __init__(self, model_id: str, client: Any, **options: Any):
        self.model_id: str = model_id
        self.client: Any = client
        self.options: Dict[str, Any] = options
        self.strategies: Dict[str, type[LLMProviderStrategy]] = {
            "OpenAIChatCompletionsStrategy": OpenAIChatCompletionsStrategy,
            "LangchainBedrockConverseStrategy": LangchainBedrockConverseStrategy,
        }

    def get_strategy(self, strategy_name: str) -> LLMProviderStrategy:
        strategy_class = self.strategies.get(strategy_name)
        if not strategy_class:
            raise ValueError(f"Unknown LLM strategy: {strategy_name}")

        return strategy_class(self.model_id, self.client, **self.options)


class LLMProvider:
    def __init__(self, strategy: LLMProviderStrategy):
        self.strategy: LLMProviderStrategy = strategy

    @staticmethod
    def build_messages(
        message: str, conversation_history: List[ConversationTurn]
    ) -> List[LLMInputMessage]:
        messages: List[LLMInputMessage] = [
            LLMInputMessage(role="system", content=SYSTEM_PROMPT)
        ]
        for turn in conversation_history:
            messages.append(
                LLMInputMessage(role="user", content=turn.user_message)
            )
            messages.append(
                LLMInputMessage(role="assistant", content=turn.assistant_message)
            )
        messages.append(LLMInputMessage(role="user", content=message))
        return messages

    def invoke_llm(self, messages: List[LLMInputMessage]) -> LLMResponse:
        return self.strategy.invoke_llm(messages)

    def generate_reply(
        self, message: str, conversation_history: List[ConversationTurn]
    ) -> str:
        """Return the assistant reply, or an apology if the service failed.

        Completion failures never propagate past this point; the caller gets
        a user-facing string either way.
        """
        llm_messages: List[LLMInputMessage] = self.build_messages(
            message, conversation_history
        )
        try:
            llm_response: LLMResponse = self.invoke_llm(llm_messages)
        except CompletionHTTPError as e:
            logger.error(
                "Completion service returned an error",
                extra={"status_code": e.status_code, "detail": e.detail},
            )
            return f"Sorry, the AI service returned an error: {e.detail}"
        except CompletionEmptyError:
            logger.exception("Completion service returned no choices")
            return NO_CHOICES_REPLY
        except CompletionResponseError:
            logger.exception("Error parsing completion service response")
            return MALFORMED_RESPONSE_REPLY
        except CompletionConnectionError:
            logger.exception("Error calling completion service")
            return CONNECTION_ERROR_REPLY

        logger.info(
            "Completion generated",
            extra={
                "model": llm_response.model,
                "input_tokens": llm_response.usage.input_tokens,
                "output_tokens": llm_response.usage.output_tokens,
            },
        )
        return llm_response.content
