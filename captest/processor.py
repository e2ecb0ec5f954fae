"""
LLM analysis of encoded screenshots.

Builds a single OpenAI-style chat-completion request carrying the image as a
base64 data URI plus the prompt, sends it through an AnalysisTransport, and
extracts the answer text from the first choice.
"""

import base64
import math
from collections.abc import Mapping
from typing import Any, Dict, Optional, Protocol

import requests
from langchain_community.chat_models import ChatOllama
from langchain_community.llms.ollama import OllamaEndpointNotFoundError
from langchain_core.messages import HumanMessage

from .config import (
    CHAT_COMPLETIONS_PATH,
    DEFAULT_ANALYSIS_MODEL,
    DEFAULT_BASE_URL,
    DEFAULT_OLLAMA_BASE_URL,
    DEFAULT_PROMPT,
    DEFAULT_PROVIDER,
    DEFAULT_TEMPERATURE,
    DEFAULT_TIMEOUT_SECONDS,
    PROVIDERS,
)
from .errors import (
    AnalysisConnectionError,
    AnalysisError,
    CaptestError,
    MalformedResponseError,
    ModelRefusedError,
)
from .frames import AnalysisRequest, AnalysisResponse, EncodedImage


class AnalysisTransport(Protocol):
    """Sends one chat-completion body and returns the decoded JSON response."""

    def complete(self, body: Dict[str, Any]) -> Any: ...


def image_to_base64(image: EncodedImage) -> str:
    """
    Convert encoded image bytes to a base64 string.

    Args:
        image: EncodedImage to embed

    Returns:
        Base64 encoded string
    """
    return base64.b64encode(image.data).decode("utf-8")


def build_analysis_request(
    image: EncodedImage, prompt: Optional[str] = None
) -> AnalysisRequest:
    """Pair the base64 image with the effective prompt."""
    effective_prompt = prompt if prompt and prompt.strip() else DEFAULT_PROMPT
    return AnalysisRequest(
        image_base64=image_to_base64(image),
        prompt=effective_prompt,
        mime_type=image.mime_type,
    )


def build_chat_completion_body(
    request: AnalysisRequest,
    model: str = DEFAULT_ANALYSIS_MODEL,
    temperature: float = DEFAULT_TEMPERATURE,
) -> Dict[str, Any]:
    """Assemble a single-turn, non-streaming chat-completion body."""
    return {
        "model": model,
        "temperature": temperature,
        "stream": False,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": request.data_uri}},
                    {"type": "text", "text": request.prompt},
                ],
            }
        ],
    }


def _error_message(error: Any) -> str:
    if isinstance(error, Mapping):
        return str(error.get("message") or error.get("type") or error)
    return str(error)


def parse_chat_completion(payload: Any) -> AnalysisResponse:
    """
    Extract the answer from a chat-completion response.

    Raises:
        ModelRefusedError: If the payload carries an `error` entry
        MalformedResponseError: If the first choice has no message content
    """
    if not isinstance(payload, Mapping):
        raise MalformedResponseError(
            "LLM response is not a JSON object",
            technical_details=repr(payload)[:500],
        )

    if payload.get("error"):
        raise ModelRefusedError(
            f"LLM endpoint returned an error: {_error_message(payload['error'])}"
        )

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise MalformedResponseError(
            "LLM response has no choices", technical_details=repr(payload)[:500]
        )

    first = choices[0]
    message = first.get("message") if isinstance(first, Mapping) else None
    content = message.get("content") if isinstance(message, Mapping) else None

    # Some servers return content as a list of typed parts
    if isinstance(content, list):
        parts = [
            part.get("text", "")
            for part in content
            if isinstance(part, Mapping) and part.get("type") == "text"
        ]
        content = "".join(parts) if parts else None

    if not isinstance(content, str):
        raise MalformedResponseError(
            "LLM response has no message content",
            technical_details=repr(first)[:500],
        )

    usage = payload.get("usage")
    return AnalysisResponse(
        answer_text=content,
        model=payload.get("model"),
        usage=dict(usage) if isinstance(usage, Mapping) else {},
    )


class OpenAICompatibleTransport:
    """POSTs to `{base_url}/v1/chat/completions` with a bounded timeout."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def url(self) -> str:
        return f"{self.base_url}{CHAT_COMPLETIONS_PATH}"

    def complete(self, body: Dict[str, Any]) -> Any:
        try:
            response = requests.post(self.url, json=body, timeout=self.timeout)
        except requests.Timeout as e:
            raise AnalysisConnectionError(
                f"LLM request timed out after {self.timeout:g}s",
                technical_details=str(e),
            ) from e
        except requests.RequestException as e:
            raise AnalysisConnectionError(
                f"Could not reach LLM endpoint at {self.base_url}",
                technical_details=str(e),
            ) from e

        try:
            payload = response.json()
        except ValueError as e:
            if response.status_code >= 400:
                raise ModelRefusedError(
                    f"LLM endpoint returned HTTP {response.status_code}",
                    technical_details=response.text[:500],
                ) from e
            raise MalformedResponseError(
                "LLM response is not valid JSON",
                technical_details=response.text[:500],
            ) from e

        if response.status_code >= 400 and not (
            isinstance(payload, Mapping) and payload.get("error")
        ):
            raise ModelRefusedError(
                f"LLM endpoint returned HTTP {response.status_code}",
                technical_details=repr(payload)[:500],
            )

        return payload


class OllamaTransport:
    """Sends the same request to a local Ollama server through LangChain."""

    def __init__(
        self,
        base_url: str = DEFAULT_OLLAMA_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        keep_alive: str = "5m",
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.keep_alive = keep_alive

    def complete(self, body: Dict[str, Any]) -> Any:
        messages = [HumanMessage(content=m["content"]) for m in body["messages"]]

        try:
            llm = ChatOllama(
                base_url=self.base_url,
                model=body.get("model", DEFAULT_ANALYSIS_MODEL),
                temperature=body.get("temperature", DEFAULT_TEMPERATURE),
                keep_alive=self.keep_alive,
                timeout=max(1, math.ceil(self.timeout)),
            )
            response = llm.invoke(messages)
        except requests.Timeout as e:
            raise AnalysisConnectionError(
                f"Ollama request timed out after {self.timeout:g}s",
                technical_details=str(e),
            ) from e
        except requests.RequestException as e:
            raise AnalysisConnectionError(
                f"Could not reach Ollama at {self.base_url}",
                technical_details=str(e),
            ) from e
        except (OllamaEndpointNotFoundError, ValueError) as e:
            # ChatOllama raises these for non-200 answers and invalid settings
            raise ModelRefusedError(
                "Ollama refused the request", technical_details=str(e)
            ) from e

        return {
            "model": body.get("model"),
            "choices": [
                {"message": {"role": "assistant", "content": response.content}}
            ],
        }


def make_transport(
    provider: str = DEFAULT_PROVIDER,
    base_url: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
) -> AnalysisTransport:
    """Build the transport for a provider name from config.PROVIDERS."""
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider: {provider}. Available: {list(PROVIDERS)}")
    if timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")

    if provider == "ollama":
        return OllamaTransport(base_url=base_url or DEFAULT_OLLAMA_BASE_URL, timeout=timeout)
    return OpenAICompatibleTransport(base_url=base_url or DEFAULT_BASE_URL, timeout=timeout)


def analyze_image(
    image: EncodedImage,
    transport: AnalysisTransport,
    prompt: Optional[str] = None,
    model: str = DEFAULT_ANALYSIS_MODEL,
    temperature: float = DEFAULT_TEMPERATURE,
) -> AnalysisResponse:
    """
    Ask the LLM about one encoded image. Exactly one request, never retried.

    Raises:
        AnalysisConnectionError: Endpoint unreachable or timed out
        MalformedResponseError: Unexpected response shape
        ModelRefusedError: Upstream error payload
        AnalysisError: Any other transport failure
    """
    request = build_analysis_request(image, prompt)
    body = build_chat_completion_body(request, model=model, temperature=temperature)

    try:
        payload = transport.complete(body)
    except CaptestError:
        raise
    except (TimeoutError, OSError) as e:
        raise AnalysisConnectionError(
            "LLM request failed", technical_details=f"{type(e).__name__}: {e}"
        ) from e
    except Exception as e:
        raise AnalysisError(
            "LLM transport failed", technical_details=f"{type(e).__name__}: {e}"
        ) from e

    return parse_chat_completion(payload)
