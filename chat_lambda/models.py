from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

ANONYMOUS_USER_ID: str = "anonymous"


class InvalidRequestError(ValueError):
    """Raised when the inbound envelope does not match any known action."""


class ConversationTurn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    chat_id: str = Field(alias="chatId")
    timestamp: str = ""
    user_message: str = Field(default="", alias="userMessage")
    assistant_message: str = Field(default="", alias="assistantMessage")

    def to_item(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


class _UserScopedRequest(BaseModel):
    user_id: str = Field(default=ANONYMOUS_USER_ID, alias="userId")

    @field_validator("user_id", mode="before")
    @classmethod
    def default_anonymous(cls, value: Any) -> Any:
        if value is None or value == "":
            return ANONYMOUS_USER_ID
        return value


class SendMessageRequest(_UserScopedRequest):
    action: Literal["send"] = "send"
    message: str


class ResetRequest(_UserScopedRequest):
    action: Literal["reset"]


class GetHistoryRequest(_UserScopedRequest):
    action: Literal["getHistory"]


AnyChatRequest = Union[SendMessageRequest, ResetRequest, GetHistoryRequest]

ChatRequest = Annotated[AnyChatRequest, Field(discriminator="action")]

chat_request_adapter: TypeAdapter = TypeAdapter(ChatRequest)


def parse_chat_request(body: Any) -> AnyChatRequest:
    if body is None:
        raise InvalidRequestError("No body in request")
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")

    payload: Dict[str, Any] = dict(body)
    if payload.get("action") is None:
        payload["action"] = "send"

    if payload["action"] == "send" and not payload.get("message"):
        raise InvalidRequestError("No message provided")

    try:
        return chat_request_adapter.validate_python(payload)
    except ValidationError as e:
        details: str = "; ".join(
            f"{'.'.join(str(loc) for loc in error['loc']) or 'body'}: {error['msg']}"
            for error in e.errors()
        )
        raise InvalidRequestError(f"Invalid request: {details}") from e


class ResetResponse(BaseModel):
    success: bool
    message: str


class HistoryResponse(BaseModel):
    history: List[ConversationTurn]


class SendMessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    message: str
    error: str


class LLMInputMessage(BaseModel):
    role: str
    content: str


class LLMUsage(BaseModel):
    input_tokens: int = Field(default=0)
    output_tokens: int = Field(default=0)


class LLMResponse(BaseModel):
    content: str
    usage: LLMUsage = Field(default_factory=LLMUsage)
    model: Optional[str] = None
