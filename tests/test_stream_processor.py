"""Tests for the newline-delimited token stream processor."""

import asyncio
import json

import pytest

from chatstream.chat.stream_processor import (
    StreamingResponseProcessor,
    extract_delta_content,
)
from chatstream.schemas.chat import ResponseConfig
from conftest import Recorder, delta_line, iter_chunks

SPEECH_ON = ResponseConfig(
    is_text_to_speech_enabled=True, model="tts-1", voice="nova"
)
SPEECH_OFF = ResponseConfig()


def _processor(
    recorder: Recorder,
    config: ResponseConfig = SPEECH_ON,
    cancel_event: asyncio.Event | None = None,
) -> StreamingResponseProcessor:
    return StreamingResponseProcessor(
        config,
        on_update=recorder.on_update,
        speak=recorder.speak,
        cancel_event=cancel_event,
    )


@pytest.mark.asyncio
async def test_hello_world_scenario(recorder: Recorder) -> None:
    chunks = [
        '{"choices":[{"delta":{"content":"Hello. "}}]}\n',
        '{"choices":[{"delta":{"content":"World."}}]}\n',
    ]

    buffer = await _processor(recorder).process(iter_chunks(chunks), "ai-1")

    assert buffer is not None
    assert buffer.accumulated_text == "Hello. World."
    assert buffer.sentences == ["Hello.", "World."]
    assert recorder.events == [
        ("update", "Hello. "),
        ("update", "Hello. World."),
        ("speak", "Hello."),
        ("speak", "World."),
    ]
    assert {message_id for message_id, _ in recorder.updates} == {"ai-1"}


@pytest.mark.asyncio
async def test_malformed_line_is_skipped(recorder: Recorder) -> None:
    chunk = delta_line("Good ") + "not-json\n" + delta_line("morning")

    buffer = await _processor(recorder, SPEECH_OFF).process(iter_chunks([chunk]), "ai")

    assert buffer is not None
    assert buffer.accumulated_text == "Good morning"
    assert buffer.decode_errors == 1
    assert "not-json" not in recorder.updates[-1][1]


@pytest.mark.asyncio
async def test_multibyte_character_split_across_chunks(recorder: Recorder) -> None:
    raw = '{"choices":[{"delta":{"content":"café ☕"}}]}\n'.encode("utf-8")
    split_at = raw.index(b"\xc3") + 1
    cup_at = raw.index("☕".encode("utf-8")) + 2

    buffer = await _processor(recorder, SPEECH_OFF).process(
        iter_chunks([raw[:split_at], raw[split_at:cup_at], raw[cup_at:]]), "ai"
    )

    assert buffer is not None
    assert buffer.accumulated_text == "café ☕"
    assert "�" not in buffer.accumulated_text


@pytest.mark.asyncio
async def test_sentences_are_spoken_once_closed(recorder: Recorder) -> None:
    chunks = [delta_line("One. "), delta_line("Two. "), delta_line("Three.")]

    buffer = await _processor(recorder).process(iter_chunks(chunks), "ai")

    assert recorder.events == [
        ("update", "One. "),
        ("update", "One. Two. "),
        ("speak", "One."),
        ("update", "One. Two. Three."),
        ("speak", "Two."),
        ("speak", "Three."),
    ]
    assert buffer is not None
    assert buffer.next_unspoken_index == 2
    assert recorder.spoken.count("Three.") == 1


@pytest.mark.asyncio
async def test_chunk_closing_several_sentences_skips_none(recorder: Recorder) -> None:
    chunks = [delta_line("A one. B two. C three.")]

    await _processor(recorder).process(iter_chunks(chunks), "ai")

    assert recorder.spoken == ["A one.", "B two.", "C three."]


@pytest.mark.asyncio
async def test_partial_line_waits_for_newline(recorder: Recorder) -> None:
    line = delta_line("Partial")
    middle = len(line) // 2

    await _processor(recorder, SPEECH_OFF).process(
        iter_chunks([line[:middle], line[middle:]]), "ai"
    )

    assert recorder.updates == [("ai", "Partial")]


@pytest.mark.asyncio
async def test_trailing_line_without_newline_is_flushed(recorder: Recorder) -> None:
    chunks = [delta_line("Head "), '{"choices":[{"delta":{"content":"tail"}}]}']

    buffer = await _processor(recorder).process(iter_chunks(chunks), "ai")

    assert buffer is not None
    assert buffer.accumulated_text == "Head tail"
    assert recorder.updates[-1] == ("ai", "Head tail")
    assert recorder.spoken == ["Head tail"]


@pytest.mark.asyncio
async def test_missing_stream_has_no_side_effects(recorder: Recorder) -> None:
    result = await _processor(recorder).process(None, "ai")

    assert result is None
    assert recorder.events == []


@pytest.mark.asyncio
async def test_speech_disabled_never_synthesizes(recorder: Recorder) -> None:
    chunks = [delta_line("One. "), delta_line("Two. "), delta_line("Three.")]

    await _processor(recorder, SPEECH_OFF).process(iter_chunks(chunks), "ai")

    assert recorder.spoken == []
    assert recorder.updates[-1] == ("ai", "One. Two. Three.")


@pytest.mark.asyncio
async def test_synthesis_failure_does_not_stop_processing() -> None:
    recorder = Recorder(fail_on={"One."})
    chunks = [delta_line("One. "), delta_line("Two. "), delta_line("Three.")]

    buffer = await _processor(recorder).process(iter_chunks(chunks), "ai")

    assert buffer is not None
    assert buffer.accumulated_text == "One. Two. Three."
    assert buffer.spoken == ["One.", "Two.", "Three."]
    assert recorder.spoken == ["Two.", "Three."]


@pytest.mark.asyncio
async def test_speech_receives_model_and_voice(recorder: Recorder) -> None:
    await _processor(recorder).process(iter_chunks([delta_line("Hi.")]), "ai")

    assert recorder.speech_args == [("Hi.", "tts-1", "nova")]


@pytest.mark.asyncio
async def test_lines_without_content_add_no_text(recorder: Recorder) -> None:
    chunks = [
        json.dumps({"choices": [{"delta": {"role": "assistant"}}]}) + "\n",
        json.dumps({"id": "chunk-1", "object": "chat.completion.chunk"}) + "\n",
        delta_line(None),
        delta_line("Only this"),
        "\n\n",
    ]

    buffer = await _processor(recorder, SPEECH_OFF).process(iter_chunks(chunks), "ai")

    assert buffer is not None
    assert buffer.accumulated_text == "Only this"
    assert buffer.decode_errors == 0


@pytest.mark.asyncio
async def test_identical_runs_produce_identical_results() -> None:
    chunks = [
        delta_line("First. Sec"),
        "garbage\n",
        delta_line("ond! Third"),
        delta_line("? Fourth"),
    ]

    first, second = Recorder(), Recorder()
    buffer_one = await _processor(first).process(iter_chunks(chunks), "ai")
    buffer_two = await _processor(second).process(iter_chunks(chunks), "ai")

    assert buffer_one is not None and buffer_two is not None
    assert buffer_one.accumulated_text == buffer_two.accumulated_text
    assert first.spoken == second.spoken == ["First.", "Second!", "Third?", "Fourth"]


@pytest.mark.asyncio
async def test_cancellation_stops_before_next_read(recorder: Recorder) -> None:
    cancel_event = asyncio.Event()

    async def on_update(message_id: str, text: str) -> None:
        await recorder.on_update(message_id, text)
        cancel_event.set()

    processor = StreamingResponseProcessor(
        SPEECH_ON,
        on_update=on_update,
        speak=recorder.speak,
        cancel_event=cancel_event,
    )
    chunks = [delta_line("One. "), delta_line("Two. "), delta_line("Three.")]

    buffer = await processor.process(iter_chunks(chunks), "ai")

    assert buffer is not None
    assert buffer.cancelled is True
    assert buffer.accumulated_text == "One. "
    assert recorder.spoken == []


@pytest.mark.asyncio
async def test_cancellation_between_utterances_skips_rest_and_end_flush(
    recorder: Recorder,
) -> None:
    cancel_event = asyncio.Event()

    async def speak(text: str, model: str | None, voice: str | None) -> None:
        await recorder.speak(text, model, voice)
        cancel_event.set()

    processor = StreamingResponseProcessor(
        SPEECH_ON,
        on_update=recorder.on_update,
        speak=speak,
        cancel_event=cancel_event,
    )

    buffer = await processor.process(
        iter_chunks([delta_line("A one. B two. C three. D")]), "ai"
    )

    assert buffer is not None
    assert buffer.cancelled is True
    assert buffer.spoken == ["A one."]
    assert recorder.spoken == ["A one."]


@pytest.mark.asyncio
async def test_transport_error_propagates_after_updates(recorder: Recorder) -> None:
    async def broken_stream():
        yield delta_line("Before ").encode("utf-8")
        raise ConnectionError("connection reset")

    with pytest.raises(ConnectionError):
        await _processor(recorder, SPEECH_OFF).process(broken_stream(), "ai")

    assert recorder.updates == [("ai", "Before ")]


def test_extract_delta_content_tolerates_odd_shapes() -> None:
    assert extract_delta_content({"choices": [{"delta": {"content": "x"}}]}) == "x"
    assert extract_delta_content({"choices": []}) == ""
    assert extract_delta_content({"choices": [{"delta": None}]}) == ""
    assert extract_delta_content({"choices": [{"delta": {"content": 5}}]}) == ""
    assert extract_delta_content(["not", "a", "dict"]) == ""
    assert extract_delta_content("text") == ""
