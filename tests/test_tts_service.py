from unittest.mock import MagicMock

import pytest

from chatstream.config import Settings
from chatstream.services.tts_service import SpeechSynthesisService


class FakeStreamedSpeech:
    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = chunks

    async def __aenter__(self) -> "FakeStreamedSpeech":
        return self

    async def __aexit__(self, *exc_info) -> bool:
        return False

    async def iter_bytes(self):
        for chunk in self._chunks:
            yield chunk


def _client(chunks: list[bytes]) -> MagicMock:
    client = MagicMock()
    client.audio.speech.with_streaming_response.create = MagicMock(
        return_value=FakeStreamedSpeech(chunks)
    )
    return client


@pytest.mark.asyncio
async def test_synthesize_collects_audio_chunks() -> None:
    client = _client([b"ab", b"cd"])
    service = SpeechSynthesisService(Settings(), openai_client=client)

    audio = await service.synthesize("  Hello there.  ", "tts-1-hd", "nova")

    assert audio == b"abcd"
    client.audio.speech.with_streaming_response.create.assert_called_once_with(
        model="tts-1-hd",
        voice="nova",
        input="Hello there.",
        response_format="mp3",
    )


@pytest.mark.asyncio
async def test_synthesize_falls_back_to_configured_voice() -> None:
    client = _client([b"x"])
    settings = Settings(tts_model="tts-1", tts_voice="shimmer", tts_response_format="opus")
    service = SpeechSynthesisService(settings, openai_client=client)

    await service.synthesize("Hi.")

    kwargs = client.audio.speech.with_streaming_response.create.call_args.kwargs
    assert kwargs["model"] == "tts-1"
    assert kwargs["voice"] == "shimmer"
    assert kwargs["response_format"] == "opus"
    assert service.response_format == "opus"


@pytest.mark.asyncio
async def test_blank_text_is_not_sent() -> None:
    client = _client([b"x"])
    service = SpeechSynthesisService(Settings(), openai_client=client)

    assert await service.synthesize("   ") == b""
    client.audio.speech.with_streaming_response.create.assert_not_called()
