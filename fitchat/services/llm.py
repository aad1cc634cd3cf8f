import base64
import json
import os
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, Union

import httpx

LLM_GATEWAY_URL = os.getenv("LLM_GATEWAY_URL", "https://api.openai.com/v1/chat/completions")
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "openai")
CHAT_MODEL = os.getenv("CHAT_MODEL", "gpt-4o-mini")
NUTRITION_MODEL = os.getenv("NUTRITION_MODEL", CHAT_MODEL)
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "google/gemini-2.5-flash-image-preview")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
LLM_CONNECT_TIMEOUT_SECONDS = float(os.getenv("LLM_CONNECT_TIMEOUT_SECONDS", "10"))
LLM_WRITE_TIMEOUT_SECONDS = float(os.getenv("LLM_WRITE_TIMEOUT_SECONDS", "30"))
LLM_POOL_TIMEOUT_SECONDS = float(os.getenv("LLM_POOL_TIMEOUT_SECONDS", "60"))
LLM_MAX_TOKENS_CHAT = int(os.getenv("LLM_MAX_TOKENS_CHAT", "700"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))


def _api_key() -> str:
    return os.getenv("LLM_API_KEY", "").strip() or os.getenv("OPENAI_API_KEY", "").strip()


def _http_timeout() -> httpx.Timeout:
    return httpx.Timeout(
        connect=LLM_CONNECT_TIMEOUT_SECONDS,
        read=LLM_TIMEOUT_SECONDS,
        write=LLM_WRITE_TIMEOUT_SECONDS,
        pool=LLM_POOL_TIMEOUT_SECONDS,
    )


class LLMRequestError(RuntimeError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


class RateLimitedError(LLMRequestError):
    pass


class CreditsDepletedError(LLMRequestError):
    pass


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: str


@dataclass
class ChatCompletion:
    content: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def first_tool_call(self) -> Optional[ToolCall]:
        return self.tool_calls[0] if self.tool_calls else None


def parse_llm_json(raw_text: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw_text)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    start = raw_text.find("{")
    end = raw_text.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            parsed = json.loads(raw_text[start : end + 1])
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            pass
    raise ValueError("Invalid JSON response from LLM")


def parse_chat_completion(data: dict[str, Any]) -> ChatCompletion:
    try:
        message = data["choices"][0]["message"]
    except (KeyError, IndexError, TypeError) as exc:
        raise ValueError("Chat completion payload has no message") from exc
    content = message.get("content")
    if isinstance(content, str):
        content = content.strip() or None
    else:
        content = None
    tool_calls: list[ToolCall] = []
    for item in message.get("tool_calls") or []:
        function = item.get("function") or {}
        name = str(function.get("name") or "").strip()
        if not name:
            continue
        arguments = function.get("arguments")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments) if arguments is not None else ""
        tool_calls.append(ToolCall(id=str(item.get("id") or ""), name=name, arguments=arguments))
    return ChatCompletion(content=content, tool_calls=tool_calls)


def decode_data_url(url: str) -> bytes:
    if not url.startswith("data:"):
        raise ValueError("Image payload is not a data URL")
    header, _, encoded = url.partition(",")
    if ";base64" not in header or not encoded:
        raise ValueError("Image data URL is not base64 encoded")
    return base64.b64decode(encoded)


def _raise_for_status(response: httpx.Response, model: str) -> None:
    if response.is_success:
        return
    status = response.status_code
    detail = (response.text or "").strip()[:220]
    if status == 429:
        raise RateLimitedError(
            provider=LLM_PROVIDER,
            model=model,
            status_code=status,
            message="Rate limit exceeded. Please try again in a moment.",
        )
    if status == 402:
        raise CreditsDepletedError(
            provider=LLM_PROVIDER,
            model=model,
            status_code=status,
            message="AI credits depleted. Please add credits to continue.",
        )
    raise LLMRequestError(
        provider=LLM_PROVIDER,
        model=model,
        status_code=status,
        message=f"Gateway request failed (status={status}): {detail or 'no response body'}",
    )


class LLMClient(Protocol):
    async def complete_chat(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        tool_choice: Union[str, dict[str, Any]] = "auto",
        model: Optional[str] = None,
    ) -> ChatCompletion:
        ...

    async def generate_image(self, prompt: str) -> bytes:
        ...


class GatewayLLMClient:
    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None, api_key: Optional[str] = None) -> None:
        self._transport = transport
        self._api_key = api_key

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key or _api_key()}", "Content-Type": "application/json"}

    async def _post(self, payload: dict[str, Any], model: str) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=_http_timeout()) as client:
                response = await client.post(LLM_GATEWAY_URL, headers=self._headers(), json=payload)
        except httpx.TimeoutException as exc:
            raise LLMRequestError(
                provider=LLM_PROVIDER,
                model=model,
                message="Gateway request timed out while waiting for response.",
            ) from exc
        except httpx.HTTPError as exc:
            raise LLMRequestError(
                provider=LLM_PROVIDER,
                model=model,
                message=f"Gateway request failed: {str(exc)[:220]}",
            ) from exc
        _raise_for_status(response, model)
        try:
            data = response.json()
        except ValueError as exc:
            raise LLMRequestError(
                provider=LLM_PROVIDER,
                model=model,
                status_code=response.status_code,
                message="Gateway returned a non-JSON body",
            ) from exc
        if not isinstance(data, dict):
            raise LLMRequestError(provider=LLM_PROVIDER, model=model, message="Gateway returned an unexpected body")
        return data

    async def complete_chat(
        self,
        messages: list[dict[str, Any]],
        tools: Optional[list[dict[str, Any]]] = None,
        tool_choice: Union[str, dict[str, Any]] = "auto",
        model: Optional[str] = None,
    ) -> ChatCompletion:
        chosen_model = model or CHAT_MODEL
        payload: dict[str, Any] = {
            "model": chosen_model,
            "messages": messages,
            "temperature": LLM_TEMPERATURE,
            "max_tokens": LLM_MAX_TOKENS_CHAT,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice
        data = await self._post(payload, chosen_model)
        try:
            return parse_chat_completion(data)
        except ValueError as exc:
            raise LLMRequestError(provider=LLM_PROVIDER, model=chosen_model, message=str(exc)) from exc

    async def generate_image(self, prompt: str) -> bytes:
        payload = {
            "model": IMAGE_MODEL,
            "messages": [{"role": "user", "content": prompt}],
            "modalities": ["image", "text"],
        }
        data = await self._post(payload, IMAGE_MODEL)
        try:
            images = data["choices"][0]["message"].get("images") or []
            url = images[0]["image_url"]["url"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMRequestError(
                provider=LLM_PROVIDER, model=IMAGE_MODEL, message="Image generation returned no image"
            ) from exc
        return decode_data_url(url)


def get_llm_client() -> LLMClient:
    return GatewayLLMClient()
