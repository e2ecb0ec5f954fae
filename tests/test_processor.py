"""
Tests for the analysis request builder and LLM transports.
"""

import base64

import pytest
import requests
from langchain_community.llms.ollama import OllamaEndpointNotFoundError
from langchain_core.messages import AIMessage, HumanMessage

from conftest import StubTransport, completion
from captest import processor
from captest.config import DEFAULT_PROMPT
from captest.errors import (
    AnalysisConnectionError,
    AnalysisError,
    MalformedResponseError,
    ModelRefusedError,
)
from captest.frames import EncodedImage
from captest.processor import (
    OllamaTransport,
    OpenAICompatibleTransport,
    analyze_image,
    build_analysis_request,
    build_chat_completion_body,
    make_transport,
    parse_chat_completion,
)

JPEG = EncodedImage(data=b"\xff\xd8fake-jpeg\xff\xd9")


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else repr(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class TestRequestBuilder:
    """Test request assembly."""

    def test_default_prompt(self):
        """Test a missing or blank prompt falls back to the default."""
        assert build_analysis_request(JPEG).prompt == DEFAULT_PROMPT
        assert build_analysis_request(JPEG, "   ").prompt == DEFAULT_PROMPT
        assert build_analysis_request(JPEG, "What app is this?").prompt == "What app is this?"

    def test_image_embedded_as_data_uri(self):
        request = build_analysis_request(JPEG)

        assert base64.b64decode(request.image_base64) == JPEG.data
        assert request.data_uri.startswith("data:image/jpeg;base64,")

    def test_body_shape(self):
        """Test the body carries one user message with image and text parts."""
        request = build_analysis_request(JPEG, "Read the title")

        body = build_chat_completion_body(request, model="llava", temperature=0.2)

        assert body["model"] == "llava"
        assert body["stream"] is False
        assert len(body["messages"]) == 1
        message = body["messages"][0]
        assert message["role"] == "user"
        image_part, text_part = message["content"]
        assert image_part == {"type": "image_url", "image_url": {"url": request.data_uri}}
        assert text_part == {"type": "text", "text": "Read the title"}


class TestParseChatCompletion:
    """Test response parsing and its error kinds."""

    def test_first_choice_content(self):
        payload = completion("A terminal window", model="llava", usage={"prompt_tokens": 12})
        payload["choices"].append({"message": {"content": "ignored"}})

        response = parse_chat_completion(payload)

        assert response.answer_text == "A terminal window"
        assert response.model == "llava"
        assert response.usage == {"prompt_tokens": 12}

    def test_content_parts(self):
        payload = {
            "choices": [
                {"message": {"content": [{"type": "text", "text": "A "}, {"type": "text", "text": "desk"}]}}
            ]
        }

        assert parse_chat_completion(payload).answer_text == "A desk"

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            "plain text",
            {},
            {"choices": []},
            {"choices": [{}]},
            {"choices": [{"message": {"content": None}}]},
            {"choices": [{"text": "legacy completion"}]},
        ],
    )
    def test_malformed(self, payload):
        with pytest.raises(MalformedResponseError):
            parse_chat_completion(payload)

    def test_error_payload(self):
        payload = {"error": {"message": "Model does not support images", "type": "invalid_request"}}

        with pytest.raises(ModelRefusedError) as exc_info:
            parse_chat_completion(payload)

        assert "does not support images" in str(exc_info.value)


class TestAnalyzeImage:
    """Test the single-shot analysis call."""

    def test_one_request_per_call(self):
        transport = StubTransport(payload=completion("A code editor"))

        response = analyze_image(JPEG, transport, prompt="Which app?")

        assert response.answer_text == "A code editor"
        assert len(transport.bodies) == 1
        assert transport.bodies[0]["messages"][0]["content"][1]["text"] == "Which app?"

    def test_connection_error_not_retried(self, unreachable_transport):
        with pytest.raises(AnalysisConnectionError):
            analyze_image(JPEG, unreachable_transport)

        assert len(unreachable_transport.bodies) == 1


class TestOpenAICompatibleTransport:
    """Test HTTP handling with requests.post patched out."""

    def _patch(self, monkeypatch, result):
        calls = []

        def fake_post(url, json=None, timeout=None):
            calls.append({"url": url, "json": json, "timeout": timeout})
            if isinstance(result, Exception):
                raise result
            return result

        monkeypatch.setattr(requests, "post", fake_post)
        return calls

    def test_posts_to_chat_completions(self, monkeypatch):
        calls = self._patch(monkeypatch, FakeResponse(payload=completion("ok")))
        transport = OpenAICompatibleTransport("http://localhost:1234/", timeout=12.5)

        payload = transport.complete({"messages": []})

        assert payload == completion("ok")
        assert calls[0]["url"] == "http://localhost:1234/v1/chat/completions"
        assert calls[0]["timeout"] == 12.5

    def test_timeout(self, monkeypatch):
        self._patch(monkeypatch, requests.Timeout("read timed out"))

        with pytest.raises(AnalysisConnectionError) as exc_info:
            OpenAICompatibleTransport(timeout=3).complete({})

        assert "timed out after 3s" in str(exc_info.value)

    def test_unreachable(self, monkeypatch):
        self._patch(monkeypatch, requests.ConnectionError("connection refused"))

        with pytest.raises(AnalysisConnectionError):
            OpenAICompatibleTransport().complete({})

    def test_invalid_json(self, monkeypatch):
        self._patch(monkeypatch, FakeResponse(payload=None, text="<html>"))

        with pytest.raises(MalformedResponseError):
            OpenAICompatibleTransport().complete({})

    def test_http_error_without_body(self, monkeypatch):
        self._patch(monkeypatch, FakeResponse(status_code=500, payload=None, text="boom"))

        with pytest.raises(ModelRefusedError):
            OpenAICompatibleTransport().complete({})

    def test_http_error_payload_is_returned_for_parsing(self, monkeypatch):
        error = {"error": {"message": "No models loaded"}}
        self._patch(monkeypatch, FakeResponse(status_code=400, payload=error))

        payload = OpenAICompatibleTransport().complete({})

        with pytest.raises(ModelRefusedError):
            parse_chat_completion(payload)


class TestMakeTransport:
    def test_openai_default(self):
        transport = make_transport()

        assert isinstance(transport, OpenAICompatibleTransport)
        assert transport.base_url == "http://localhost:1234"

    def test_ollama(self):
        transport = make_transport("ollama", timeout=5)

        assert isinstance(transport, OllamaTransport)
        assert transport.base_url == "http://localhost:11434"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            make_transport("carrier-pigeon")

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            make_transport(timeout=0)


class FakeChatOllama:
    """Stands in for ChatOllama, recording settings and answering or failing."""

    instances = []
    reply = "A chat window"
    invoke_error = None
    init_error = None

    def __init__(self, **kwargs):
        if FakeChatOllama.init_error is not None:
            raise FakeChatOllama.init_error
        self.kwargs = kwargs
        self.messages = None
        FakeChatOllama.instances.append(self)

    def invoke(self, messages):
        self.messages = messages
        if FakeChatOllama.invoke_error is not None:
            raise FakeChatOllama.invoke_error
        return AIMessage(content=FakeChatOllama.reply)


class TestOllamaTransport:
    """Test the LangChain-backed transport with ChatOllama patched out."""

    @pytest.fixture(autouse=True)
    def fake_chat(self, monkeypatch):
        FakeChatOllama.instances = []
        FakeChatOllama.invoke_error = None
        FakeChatOllama.init_error = None
        monkeypatch.setattr(processor, "ChatOllama", FakeChatOllama)
        return FakeChatOllama

    def _body(self):
        request = build_analysis_request(JPEG, "What is open?")
        return build_chat_completion_body(request, model="llava:7b", temperature=0.3)

    def test_reply_reshaped_into_first_choice(self):
        payload = OllamaTransport("http://ollama:11434/", timeout=2.5).complete(self._body())

        assert parse_chat_completion(payload).answer_text == "A chat window"
        assert payload["model"] == "llava:7b"
        chat = FakeChatOllama.instances[0]
        assert chat.kwargs["base_url"] == "http://ollama:11434"
        assert chat.kwargs["model"] == "llava:7b"
        assert chat.kwargs["temperature"] == 0.3
        assert chat.kwargs["timeout"] == 3
        message = chat.messages[0]
        assert isinstance(message, HumanMessage)
        assert message.content[0]["image_url"]["url"].startswith("data:image/jpeg;base64,")

    def test_timeout(self, fake_chat):
        fake_chat.invoke_error = requests.Timeout("read timed out")

        with pytest.raises(AnalysisConnectionError) as exc_info:
            OllamaTransport(timeout=4).complete(self._body())

        assert "timed out after 4s" in str(exc_info.value)

    def test_unreachable(self, fake_chat):
        fake_chat.invoke_error = requests.ConnectionError("connection refused")

        with pytest.raises(AnalysisConnectionError):
            OllamaTransport().complete(self._body())

    @pytest.mark.parametrize(
        "error",
        [
            OllamaEndpointNotFoundError("model llava:7b not found"),
            ValueError("Ollama call failed with status code 500"),
        ],
    )
    def test_refusals(self, fake_chat, error):
        fake_chat.invoke_error = error

        with pytest.raises(ModelRefusedError):
            OllamaTransport().complete(self._body())

    def test_invalid_settings_are_refusals(self, fake_chat):
        fake_chat.init_error = ValueError("temperature must be a float")

        with pytest.raises(ModelRefusedError):
            OllamaTransport().complete(self._body())


class TestAnalyzeImageErrorBoundary:
    """Test that transports cannot leak foreign exceptions."""

    def test_builtin_timeout_becomes_connection_error(self):
        transport = StubTransport(error=TimeoutError("socket read timed out"))

        with pytest.raises(AnalysisConnectionError) as exc_info:
            analyze_image(JPEG, transport)

        assert "TimeoutError" in exc_info.value.technical_details

    def test_unexpected_error_becomes_analysis_error(self):
        transport = StubTransport(error=KeyError("choices"))

        with pytest.raises(AnalysisError) as exc_info:
            analyze_image(JPEG, transport)

        assert type(exc_info.value) is AnalysisError
