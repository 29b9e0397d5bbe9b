import json
from types import SimpleNamespace

import httpx
import pytest
from anthropic import APIConnectionError

from ai_service import AITextService
from enrichments import ENTITIES_PROMPT, MISSING_TOPICS_PROMPT
from errors import EmptyResponseError, HttpError, NoKeyError


class FakeMessages:
    def __init__(self, text="Generated text.", error=None):
        self.text = text
        self.error = error
        self.requests = []

    def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(content=[SimpleNamespace(text=self.text)], stop_reason="end_turn")


def _service(messages, **kwargs):
    client = SimpleNamespace(messages=messages)
    return AITextService(api_key="test-key", fixture_mode=False, client=client, **kwargs)


def test_fixture_mode_is_deterministic_and_offline():
    service = AITextService(api_key="", fixture_mode=True)
    entities = json.loads(service.complete(ENTITIES_PROMPT.format(content="x")))
    topics = json.loads(service.complete(MISSING_TOPICS_PROMPT.format(title="t", entities="", content="")))

    assert entities["entities"][0]["name"] == "Content Marketing"
    assert len(topics["missing_topics"]) == 4
    assert service.is_available()


def test_missing_key_raises():
    service = AITextService(api_key="", fixture_mode=False)
    assert not service.is_available()
    with pytest.raises(NoKeyError):
        service.complete("hello")


def test_scan_mode_supplies_defaults():
    messages = FakeMessages()
    _service(messages, scan_mode="quick").complete("hello")
    _service(messages, scan_mode="full").complete("hello", max_tokens=600, temperature=0.1)

    assert (messages.requests[0]["max_tokens"], messages.requests[0]["temperature"]) == (250, 0.3)
    assert (messages.requests[1]["max_tokens"], messages.requests[1]["temperature"]) == (600, 0.1)


def test_empty_response_raises():
    with pytest.raises(EmptyResponseError):
        _service(FakeMessages(text="   ")).complete("hello")


def test_sdk_failure_becomes_http_error():
    error = APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))
    with pytest.raises(HttpError):
        _service(FakeMessages(error=error)).complete("hello")


def test_prompt_cache(transients):
    messages = FakeMessages()
    service = _service(messages, cache=transients, cache_minutes=5)

    assert service.complete("hello") == "Generated text."
    assert service.complete("hello") == "Generated text."
    assert len(messages.requests) == 1

    service.complete("another prompt")
    assert len(messages.requests) == 2


def test_cache_disabled_by_default(transients):
    messages = FakeMessages()
    service = _service(messages, cache=transients, cache_minutes=0)
    service.complete("hello")
    service.complete("hello")
    assert len(messages.requests) == 2
