from types import SimpleNamespace

import httpx
import openai
import pytest

from consultation_ai.core.errors import UpstreamError
from consultation_ai.services.ai_gateway import (
    AUDIO_TRANSCRIPTIONS,
    CHAT_COMPLETIONS,
    AIGateway,
    message_content,
)

REQUEST = httpx.Request("POST", "https://api.example.test/v1/chat/completions")


class FakeCompletion:
    def __init__(self, content):
        self.content = content

    def model_dump(self):
        return {"choices": [{"message": {"role": "assistant", "content": self.content}}]}


class FakeCreate:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def __call__(self, **payload):
        self.calls.append(payload)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def fake_client(chat_outcomes=(), transcription_outcomes=()):
    chat = FakeCreate(chat_outcomes)
    transcriptions = FakeCreate(transcription_outcomes)
    client = SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=chat)),
        audio=SimpleNamespace(transcriptions=SimpleNamespace(create=transcriptions)),
    )
    return client, chat, transcriptions


def status_error(status_code=500, text="boom"):
    response = httpx.Response(status_code, text=text, request=REQUEST)
    return openai.APIStatusError(f"Error code: {status_code}", response=response, body=None)


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


async def test_successful_call_returns_plain_dict():
    client, chat, _ = fake_client([FakeCompletion("hello")])
    gateway = AIGateway(client, sleep=SleepRecorder())

    response = await gateway.call(CHAT_COMPLETIONS, {"model": "m", "messages": []})

    assert message_content(response) == "hello"
    assert chat.calls == [{"model": "m", "messages": []}]


async def test_retries_with_linear_backoff_then_succeeds():
    client, chat, _ = fake_client([status_error(503), openai.APIConnectionError(request=REQUEST), FakeCompletion("ok")])
    sleep = SleepRecorder()
    gateway = AIGateway(client, max_attempts=3, backoff_seconds=2.0, sleep=sleep)

    response = await gateway.call(CHAT_COMPLETIONS, {})

    assert message_content(response) == "ok"
    assert len(chat.calls) == 3
    assert sleep.delays == [2.0, 4.0]


async def test_exhausted_retries_raise_upstream_error_with_status_and_body():
    client, chat, _ = fake_client([status_error(500), status_error(500), status_error(429, "slow down")])
    sleep = SleepRecorder()
    gateway = AIGateway(client, max_attempts=3, backoff_seconds=2.0, sleep=sleep)

    with pytest.raises(UpstreamError) as excinfo:
        await gateway.call(CHAT_COMPLETIONS, {})

    assert excinfo.value.status_code == 429
    assert excinfo.value.body == "slow down"
    assert isinstance(excinfo.value.__cause__, openai.APIStatusError)
    assert len(chat.calls) == 3
    # no sleep after the final attempt
    assert sleep.delays == [2.0, 4.0]


async def test_transport_failure_has_no_status_code():
    errors = [openai.APIConnectionError(request=REQUEST) for _ in range(3)]
    client, _, _ = fake_client(errors)
    gateway = AIGateway(client, sleep=SleepRecorder())

    with pytest.raises(UpstreamError) as excinfo:
        await gateway.call(CHAT_COMPLETIONS, {})

    assert excinfo.value.status_code is None


async def test_transcription_endpoint_dispatch():
    transcript = SimpleNamespace(model_dump=lambda: {"text": "patient has a cough"})
    client, chat, transcriptions = fake_client(transcription_outcomes=[transcript])
    gateway = AIGateway(client, sleep=SleepRecorder())

    response = await gateway.call(AUDIO_TRANSCRIPTIONS, {"model": "whisper-1"})

    assert response == {"text": "patient has a cough"}
    assert chat.calls == []
    assert transcriptions.calls == [{"model": "whisper-1"}]


async def test_unknown_endpoint_is_rejected():
    client, _, _ = fake_client()
    gateway = AIGateway(client, sleep=SleepRecorder())

    with pytest.raises(ValueError):
        await gateway.call("/embeddings", {})


def test_message_content_treats_null_as_empty():
    assert message_content({"choices": [{"message": {"content": None}}]}) == ""
