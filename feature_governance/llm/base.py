"""Abstract base class for provider adapters."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import httpx
from pydantic import ValidationError

from feature_governance.errors import (
    ConfigurationError,
    ProviderError,
    QuotaExceeded,
    RateLimited,
    TransportError,
)
from feature_governance.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)


class LLMAdapter(ABC):
    """Abstract base class for provider adapters.

    One subclass per external protocol family. A family is described by three
    capabilities: how a request is formatted (``_build_request``), how the
    answer is read (``_parse_response``) and how the call is authenticated
    (``_auth_headers`` / ``_endpoint``). ``chat_completion`` drives them and
    maps every failure onto the pipeline error taxonomy; nothing is retried.
    """

    #: Registry key, e.g. ``"openai"``.
    provider_name: str = ""
    default_base_url: str = ""
    default_model: str = ""
    available_models: tuple[str, ...] = ()
    supports_streaming: bool = True
    requires_api_key: bool = True

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float = 120.0,
        max_tokens: int = 4096,
    ):
        if self.requires_api_key and not api_key:
            raise ConfigurationError(f"No API key configured for provider '{self.provider_name}'")
        self.api_key = api_key
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.model = model or self.default_model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._client = client

    # ------------------------------------------------------------------
    # Capabilities implemented per protocol family
    # ------------------------------------------------------------------

    @abstractmethod
    def _endpoint(self, model: str) -> str:
        """Return the URL to POST the completion request to."""
        ...

    @abstractmethod
    def _auth_headers(self) -> dict[str, str]:
        ...

    @abstractmethod
    def _build_request(
        self,
        messages: list[LLMMessage],
        model: str,
        stream: bool,
        temperature: float | None,
        max_tokens: int,
    ) -> dict[str, Any]:
        """Build the API request payload."""
        ...

    @abstractmethod
    def _parse_response(self, data: dict[str, Any]) -> str:
        """Extract the completion text from a decoded response body."""
        ...

    def _endpoint_params(self) -> dict[str, str]:
        return {}

    # ------------------------------------------------------------------
    # Call contract
    # ------------------------------------------------------------------

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        stream: bool = False,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send a completion request.

        Adapters that cannot stream are called in blocking mode regardless of
        ``stream``. A streamed response carries the upstream body untouched
        in ``LLMResponse.stream``.
        """
        model = model or self.model
        stream = stream and self.supports_streaming

        payload = self._build_request(
            messages=messages,
            model=model,
            stream=stream,
            temperature=temperature,
            max_tokens=max_tokens or self.max_tokens,
        )
        request = self._client.build_request(
            "POST",
            self._endpoint(model),
            params=self._endpoint_params(),
            json=payload,
            headers={"Content-Type": "application/json", **self._auth_headers()},
            timeout=self.timeout,
        )

        logger.info(f"Calling provider {self.provider_name} with model {model} (stream={stream})")
        start_time = time.perf_counter()

        try:
            response = await self._client.send(request, stream=stream)
        except httpx.TimeoutException as e:
            raise TransportError(
                f"Provider {self.provider_name} timed out after {self.timeout}s",
                provider=self.provider_name,
            ) from e
        except httpx.HTTPError as e:
            raise TransportError(
                f"Could not reach provider {self.provider_name}: {type(e).__name__}",
                provider=self.provider_name,
            ) from e

        if response.is_error:
            body = await self._read_error_body(response)
            raise map_http_error(self.provider_name, response.status_code, body, response.headers)

        if stream:
            return LLMResponse(
                provider=self.provider_name,
                model=model,
                stream=_passthrough(response),
            )

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Provider {self.provider_name} returned a non-JSON body",
                provider=self.provider_name,
                status_code=response.status_code,
                body=response.text,
            ) from e

        logger.info(f"Provider {self.provider_name} answered in {latency_ms}ms")

        try:
            return LLMResponse(
                content=self._parse_response(data) or "",
                provider=self.provider_name,
                model=data.get("model", model) if isinstance(data, dict) else model,
                usage=self._parse_usage(data),
                finish_reason=self._parse_finish_reason(data),
                raw_response=data if isinstance(data, dict) else {"body": data},
            )
        except (AttributeError, TypeError, IndexError, KeyError, ValidationError) as e:
            logger.error(f"Provider {self.provider_name} returned an unexpected response shape: {e}")
            raise ProviderError(
                f"Provider {self.provider_name} returned an unexpected response shape",
                provider=self.provider_name,
                status_code=response.status_code,
                body=response.text,
            ) from e

    def _parse_usage(self, data: Any) -> dict[str, Any]:
        if isinstance(data, dict) and isinstance(data.get("usage"), dict):
            return data["usage"]
        return {}

    def _parse_finish_reason(self, data: Any) -> str | None:
        return None

    async def _read_error_body(self, response: httpx.Response) -> str:
        try:
            await response.aread()
            return response.text
        except httpx.HTTPError:
            return ""
        finally:
            await response.aclose()


async def _passthrough(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield the raw upstream body, closing the response when done."""
    try:
        async for chunk in response.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        raise TransportError(f"Stream interrupted: {type(e).__name__}") from e
    finally:
        await response.aclose()


def _retry_after(headers: httpx.Headers | dict[str, str] | None) -> float | None:
    if not headers:
        return None
    value = headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def map_http_error(
    provider: str,
    status_code: int,
    body: str,
    headers: httpx.Headers | dict[str, str] | None = None,
) -> Exception:
    """Map a non-2xx upstream answer to the error taxonomy."""
    lowered = (body or "").lower()

    if status_code == 402 or "insufficient balance" in lowered or "insufficient_balance" in lowered:
        return QuotaExceeded(
            f"Provider {provider} reports insufficient credits",
            provider=provider,
        )
    if status_code == 429:
        if "insufficient_quota" in lowered:
            return QuotaExceeded(f"Provider {provider} quota exhausted", provider=provider)
        return RateLimited(
            f"Provider {provider} rate limit exceeded, try again later",
            provider=provider,
            retry_after=_retry_after(headers),
        )
    return ProviderError(
        f"Provider {provider} returned HTTP {status_code}",
        provider=provider,
        status_code=status_code,
        body=body,
    )
