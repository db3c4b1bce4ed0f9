import json
import pathlib
import sys
from typing import AsyncIterator, Iterable

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


def delta_line(content: str | None) -> str:
    """Return one newline-terminated token delta line."""

    delta = {} if content is None else {"content": content}
    return json.dumps({"choices": [{"delta": delta}]}) + "\n"


async def iter_chunks(chunks: Iterable[str | bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk


class Recorder:
    """Collect update and speech callbacks in call order."""

    def __init__(self, fail_on: Iterable[str] = ()) -> None:
        self.fail_on = set(fail_on)
        self.updates: list[tuple[str, str]] = []
        self.spoken: list[str] = []
        self.speech_args: list[tuple[str, str | None, str | None]] = []
        self.events: list[tuple[str, str]] = []

    async def on_update(self, message_id: str, text: str) -> None:
        self.updates.append((message_id, text))
        self.events.append(("update", text))

    async def speak(self, text: str, model: str | None, voice: str | None) -> None:
        self.events.append(("speak", text))
        self.speech_args.append((text, model, voice))
        if text in self.fail_on:
            raise RuntimeError(f"synthesis failed for {text}")
        self.spoken.append(text)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()
