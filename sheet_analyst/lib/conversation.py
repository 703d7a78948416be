import logging
from typing import Any, Dict, List, Optional

from sheet_analyst.lib.dataset import Dataset
from sheet_analyst.lib.errors import UpstreamError
from sheet_analyst.lib.models import AnalysisAnswer, ChartType, Message

ERROR_PREFIX = "Sorry, I encountered an error:"


class Conversation:
    """Ordered message log for one dataset."""

    def __init__(self, messages: Optional[List[Message]] = None) -> None:
        self._messages: List[Message] = list(messages or [])

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def get(self, message_id: str) -> Optional[Message]:
        return next((m for m in self._messages if m.id == message_id), None)

    def add_user(self, content: str) -> Message:
        message = Message(role="user", content=content)
        self._messages.append(message)
        return message

    def add_assistant(self, answer: AnalysisAnswer) -> Message:
        message = Message(role="assistant", content=answer.text, chart=answer.chart)
        self._messages.append(message)
        return message

    def add_error(self, error: Exception) -> Message:
        message = Message(role="assistant", content=f"{ERROR_PREFIX} {error}", is_error=True)
        self._messages.append(message)
        return message

    def toggle_chart(self, message_id: str) -> bool:
        message = self.get(message_id)
        if message is None or message.chart is None:
            return False
        message.visible = not message.visible
        return message.visible

    def set_chart_type(self, message_id: str, chart_type: Optional[ChartType]) -> Optional[str]:
        """Override how a message's chart is drawn; ``None`` restores the chart's own type."""
        message = self.get(message_id)
        if message is None or message.chart is None:
            return None
        message.chart_type_override = chart_type
        return message.effective_chart_type

    def clear(self) -> None:
        self._messages.clear()

    def export(self) -> List[Dict[str, Any]]:
        return [m.to_dict() for m in self._messages]

    @classmethod
    def from_export(cls, items: List[Dict[str, Any]]) -> "Conversation":
        return cls([Message.model_validate(item) for item in items])


class ChatSession:
    def __init__(self, analyst: Any, dataset: Optional[Dataset] = None) -> None:
        self.analyst = analyst
        self.dataset = dataset
        self.conversation = Conversation()
        self._in_flight = False

    @property
    def busy(self) -> bool:
        return self._in_flight

    def load_dataset(self, dataset: Dataset) -> None:
        self.dataset = dataset
        self.conversation.clear()
        logging.info(
            "event=dataset_loaded file_name=%s sheets=%s total_rows=%s",
            dataset.file_name,
            len(dataset.sheets),
            dataset.total_rows,
        )

    def clear_data(self) -> None:
        self.dataset = None
        self.conversation.clear()

    async def ask(self, question: str) -> Optional[Message]:
        q = (question or "").strip()
        if not q or self.dataset is None:
            return None
        if self._in_flight:
            logging.info("event=chat_ask status=skipped reason=in_flight")
            return None
        self._in_flight = True
        try:
            self.conversation.add_user(q)
            try:
                answer = await self.analyst.analyze(q, self.dataset)
            except UpstreamError as exc:
                return self.conversation.add_error(exc)
            return self.conversation.add_assistant(answer)
        finally:
            self._in_flight = False
