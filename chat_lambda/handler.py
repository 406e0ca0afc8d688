import json
import os
from typing import Any, Dict, Optional

import boto3
import requests
from aws_lambda_powertools import Logger
from aws_lambda_powertools.logging import correlation_paths
from aws_lambda_powertools.utilities.data_classes import (
    APIGatewayProxyEventV2,
    event_source,
)
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import BaseModel

from chat_lambda.llm import LLMProvider, LLMProviderFactory
from chat_lambda.models import (
    AnyChatRequest,
    ErrorResponse,
    InvalidRequestError,
    SendMessageRequest,
    parse_chat_request,
)
from chat_lambda.repository import ConversationStore, DynamoDBRepository
from chat_lambda.service import ChatResponse, ChatService

logger: Logger = Logger()

TABLE_NAME: str = os.environ["TABLE_NAME"]
OPENAI_API_KEY: str = os.environ.get("OPENAI_API_KEY", "")
OPENAI_MODEL_ID: str = os.environ.get("OPENAI_MODEL_ID", "gpt-4.1-nano")
OPENAI_API_URL: str = os.environ.get(
    "OPENAI_API_URL", "https://api.openai.com/v1/chat/completions"
)
OPENAI_TIMEOUT_SECONDS: float = float(
    os.environ.get("OPENAI_TIMEOUT_SECONDS", "25")
)
LLM_PROVIDER_STRATEGY: str = os.environ.get(
    "LLM_PROVIDER_STRATEGY", "OpenAIChatCompletionsStrategy"
)
BEDROCK_MODEL_ID: str = os.environ.get(
    "BEDROCK_MODEL_ID", "amazon.nova-lite-v1:0"
)

ERROR_MESSAGE: str = "Sorry, I encountered an error processing your request."

PREFLIGHT_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
    "Access-Control-Max-Age": "86400",
}
RESPONSE_HEADERS: Dict[str, str] = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
}
SEND_RESPONSE_HEADERS: Dict[str, str] = {
    **RESPONSE_HEADERS,
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def build_llm_provider(strategy_name: str) -> LLMProvider:
    if strategy_name == "LangchainBedrockConverseStrategy":
        factory: LLMProviderFactory = LLMProviderFactory(
            BEDROCK_MODEL_ID, boto3.client("bedrock-runtime")
        )
    else:
        factory = LLMProviderFactory(
            OPENAI_MODEL_ID,
            requests.Session(),
            api_key=OPENAI_API_KEY,
            api_url=OPENAI_API_URL,
            timeout=OPENAI_TIMEOUT_SECONDS,
        )
    return LLMProvider(factory.get_strategy(strategy_name))


def build_response(
    status_code: int,
    body: BaseModel,
    headers: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": headers or RESPONSE_HEADERS,
        "body": body.model_dump_json(by_alias=True),
    }


def get_request_method(event: APIGatewayProxyEventV2) -> Optional[str]:
    request_context: Dict[str, Any] = event.get("requestContext") or {}
    http: Dict[str, Any] = request_context.get("http") or {}
    return http.get("method")


def read_json_body(event: APIGatewayProxyEventV2) -> Any:
    if event.body is None or event.body == "":
        raise InvalidRequestError("No body in request")

    body: Any = event.decoded_body
    if not isinstance(body, str):
        # Direct invocations may pass the body as an object.
        return body

    try:
        return json.loads(body)
    except ValueError as e:
        raise InvalidRequestError(f"Invalid JSON body: {e}") from e


dynamodb_repository: DynamoDBRepository = DynamoDBRepository(
    TABLE_NAME, boto3.resource("dynamodb")
)
conversation_store: ConversationStore = ConversationStore(dynamodb_repository)
llm_provider: LLMProvider = build_llm_provider(LLM_PROVIDER_STRATEGY)
chat_service: ChatService = ChatService(conversation_store, llm_provider)


@logger.inject_lambda_context(
    correlation_id_path=correlation_paths.API_GATEWAY_HTTP,
    log_event=True,
    clear_state=True,
)
@event_source(data_class=APIGatewayProxyEventV2)
def lambda_handler(
    event: APIGatewayProxyEventV2, context: LambdaContext
) -> Dict[str, Any]:
    if get_request_method(event) == "OPTIONS":
        return {"statusCode": 200, "headers": PREFLIGHT_HEADERS, "body": ""}

    try:
        request: AnyChatRequest = parse_chat_request(read_json_body(event))
        logger.append_keys(user_id=request.user_id, action=request.action)

        response_model: ChatResponse = chat_service.handle(request)

        headers: Optional[Dict[str, str]] = (
            SEND_RESPONSE_HEADERS
            if isinstance(request, SendMessageRequest)
            else None
        )
        return build_response(200, response_model, headers)

    except InvalidRequestError as e:
        logger.warning(f"Validation Error: {e}")
        return build_response(
            500, ErrorResponse(message=ERROR_MESSAGE, error=str(e))
        )

    except Exception as e:
        logger.exception("Error processing chat request")
        return build_response(
            500, ErrorResponse(message=ERROR_MESSAGE, error=str(e))
        )
