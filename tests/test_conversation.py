import asyncio
from typing import Any

from sheet_analyst.lib.conversation import ChatSession, Conversation
from sheet_analyst.lib.dataset import Dataset
from sheet_analyst.lib.errors import UpstreamError
from sheet_analyst.lib.models import AnalysisAnswer, ChartPayload

DATASET = Dataset(file_name="pokemon.xlsx", sheets={"Pokemon": [{"Name": "A", "Attack": 10}]})


def _chart() -> ChartPayload:
    return ChartPayload(type="bar", title="Attack", data=[{"Name": "A", "Attack": 10}], xKey="Name", yKey="Attack")


class _Analyst:
    def __init__(self, error: Exception = None, gate: asyncio.Event = None) -> None:
        self.error = error
        self.gate = gate
        self.questions = []

    async def analyze(self, question: str, dataset: Any) -> AnalysisAnswer:
        self.questions.append(question)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return AnalysisAnswer(text="A has 10 Attack.", chart=_chart())


def test_ask_appends_user_and_assistant_messages() -> None:
    session = ChatSession(_Analyst(), DATASET)
    reply = asyncio.run(session.ask("  who has attack?  "))
    messages = session.conversation.messages
    assert [m.role for m in messages] == ["user", "assistant"]
    assert messages[0].content == "who has attack?"
    assert reply is messages[1]
    assert reply.chart is not None
    assert reply.visible is False


def test_blank_question_or_missing_dataset_is_ignored() -> None:
    analyst = _Analyst()
    session = ChatSession(analyst, DATASET)
    assert asyncio.run(session.ask("   ")) is None
    assert asyncio.run(ChatSession(analyst).ask("hello")) is None
    assert analyst.questions == []
    assert len(session.conversation) == 0


def test_upstream_error_becomes_error_message() -> None:
    session = ChatSession(_Analyst(error=UpstreamError("Failed to analyze data: boom")), DATASET)
    reply = asyncio.run(session.ask("top 3 by Attack"))
    assert reply.role == "assistant"
    assert reply.is_error
    assert reply.content.startswith("Sorry, I encountered an error:")
    assert "boom" in reply.content
    assert len(session.conversation) == 2
    assert not session.busy


def test_second_question_while_in_flight_is_ignored() -> None:
    async def scenario():
        gate = asyncio.Event()
        analyst = _Analyst(gate=gate)
        session = ChatSession(analyst, DATASET)
        first = asyncio.create_task(session.ask("first"))
        await asyncio.sleep(0)
        assert session.busy
        second = await session.ask("second")
        gate.set()
        return await first, second, analyst.questions

    first, second, questions = asyncio.run(scenario())
    assert first is not None
    assert second is None
    assert questions == ["first"]


def test_loading_dataset_clears_conversation() -> None:
    session = ChatSession(_Analyst(), DATASET)
    asyncio.run(session.ask("hello"))
    session.load_dataset(Dataset(file_name="other.csv", sheets={"S": []}))
    assert session.dataset.file_name == "other.csv"
    assert len(session.conversation) == 0

    asyncio.run(session.ask("hello"))
    session.clear_data()
    assert session.dataset is None
    assert len(session.conversation) == 0


def test_chart_visibility_and_type_override() -> None:
    conv = Conversation()
    user = conv.add_user("q")
    msg = conv.add_assistant(AnalysisAnswer(text="a", chart=_chart()))

    assert conv.toggle_chart(msg.id) is True
    assert conv.toggle_chart(msg.id) is False
    assert conv.toggle_chart(user.id) is False
    assert conv.toggle_chart("missing") is False

    assert msg.effective_chart_type == "bar"
    assert conv.set_chart_type(msg.id, "pie") == "pie"
    assert msg.chart.type == "bar"
    assert conv.set_chart_type(msg.id, None) == "bar"
    assert conv.set_chart_type(user.id, "line") is None


def test_export_and_restore() -> None:
    conv = Conversation()
    conv.add_user("q")
    msg = conv.add_assistant(AnalysisAnswer(text="a", chart=_chart()))
    conv.set_chart_type(msg.id, "area")

    exported = conv.export()
    assert exported[0]["role"] == "user"
    assert "chart" not in exported[0]
    assert exported[1]["chart"]["xKey"] == "Name"
    assert exported[1]["chartTypeOverride"] == "area"

    restored = Conversation.from_export(exported)
    assert restored.messages[1].chart.x_key == "Name"
    assert restored.messages[1].effective_chart_type == "area"
    assert restored.messages[1].id == msg.id
