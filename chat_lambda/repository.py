import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import ValidationError

from chat_lambda.models import ConversationTurn

logger: Logger = Logger(child=True)

TurnKey = Dict[str, str]


class DynamoDBRepository:
    def __init__(self, table_name: str, dynamodb_resource: Any):
        self.table: Any = dynamodb_resource.Table(table_name)
        logger.info(f"DynamoDBRepository initialized for table: {table_name}")

    def _query_partition(
        self, user_id: str, **kwargs: Any
    ) -> List[Dict[str, Any]]:
        query_kwargs: Dict[str, Any] = {
            "KeyConditionExpression": Key("userId").eq(user_id),
            "ScanIndexForward": True,
            **kwargs,
        }
        items: List[Dict[str, Any]] = []
        while True:
            response: Dict[str, Any] = self.table.query(**query_kwargs)
            items.extend(response.get("Items", []))
            last_key: Optional[Dict[str, Any]] = response.get(
                "LastEvaluatedKey"
            )
            if not last_key:
                return items
            query_kwargs["ExclusiveStartKey"] = last_key

    def query_turns(self, user_id: str) -> List[Dict[str, Any]]:
        return self._query_partition(user_id)

    def query_turn_keys(self, user_id: str) -> List[TurnKey]:
        items: List[Dict[str, Any]] = self._query_partition(
            user_id, ProjectionExpression="userId, chatId"
        )
        return [
            {"userId": item["userId"], "chatId": item["chatId"]}
            for item in items
        ]

    def put_turn(self, item: Dict[str, Any]) -> None:
        self.table.put_item(Item=item)

    def delete_turn(self, key: TurnKey) -> None:
        self.table.delete_item(Key=key)

    def batch_delete_turns(self, keys: List[TurnKey]) -> None:
        # batch_writer groups deletes into BatchWriteItem calls of 25 and
        # resends unprocessed items.
        with self.table.batch_writer(
            overwrite_by_pkeys=["userId", "chatId"]
        ) as batch:
            for key in keys:
                batch.delete_item(Key=key)


class ConversationStore:
    """Reads and writes the conversation turns of a single user partition.

    The repository is injected by the caller. Any object exposing
    ``query_turns``, ``query_turn_keys``, ``put_turn`` and ``delete_turn``
    works; ``batch_delete_turns`` is optional and, when missing, turns are
    deleted one at a time.
    """

    def __init__(
        self,
        repository: Any,
        clock: Callable[[], float] = time.time,
    ):
        self.repository: Any = repository
        self.clock: Callable[[], float] = clock
        self._last_chat_id: int = 0

    def _next_chat_id(self, now: float) -> str:
        chat_id: int = int(now * 1000)
        # Only monotonic within this process; concurrent writers for the same
        # user can still produce the same id.
        if chat_id <= self._last_chat_id:
            chat_id = self._last_chat_id + 1
        self._last_chat_id = chat_id
        return str(chat_id)

    def fetch_history(self, user_id: str) -> List[ConversationTurn]:
        try:
            items: List[Dict[str, Any]] = self.repository.query_turns(user_id)
        except (ClientError, BotoCoreError):
            logger.exception(
                "Error retrieving conversation history",
                extra={"user_id": user_id},
            )
            return []

        turns: List[ConversationTurn] = []
        for item in items:
            try:
                turns.append(ConversationTurn.model_validate(item))
            except ValidationError:
                logger.warning(
                    "Skipping malformed conversation turn",
                    extra={"user_id": user_id, "chat_id": item.get("chatId")},
                )

        logger.info(
            f"Fetched {len(turns)} turns from history",
            extra={"user_id": user_id},
        )
        return turns

    def append_turn(
        self, user_id: str, user_message: str, assistant_message: str
    ) -> ConversationTurn:
        now: float = self.clock()
        turn: ConversationTurn = ConversationTurn(
            user_id=user_id,
            chat_id=self._next_chat_id(now),
            timestamp=datetime.fromtimestamp(now, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            user_message=user_message,
            assistant_message=assistant_message,
        )
        self.repository.put_turn(turn.to_item())
        logger.info(
            f"Saved conversation turn: {turn.chat_id}",
            extra={"user_id": user_id},
        )
        return turn

    def clear_history(self, user_id: str) -> bool:
        try:
            keys: List[TurnKey] = self.repository.query_turn_keys(user_id)
            batch_delete: Optional[Callable[[List[TurnKey]], None]] = getattr(
                self.repository, "batch_delete_turns", None
            )
            if keys and batch_delete is not None:
                batch_delete(keys)
            elif keys:
                for key in keys:
                    self.repository.delete_turn(key)
        except Exception:
            logger.exception(
                "Error deleting conversation history",
                extra={"user_id": user_id},
            )
            return False

        logger.info(
            f"Deleted {len(keys)} turns from history",
            extra={"user_id": user_id},
        )
        return True
