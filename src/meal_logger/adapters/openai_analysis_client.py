"""OpenAI Responses API client for meal analysis."""

import json
from dataclasses import dataclass

import httpx
import openai
from openai import AsyncOpenAI

from meal_logger.domain.analysis import AnalysisFailureKind
from meal_logger.services.analysis import AnalysisClient, AnalysisClientError


@dataclass
class OpenAIAnalysisClient(AnalysisClient):
    """Analysis client backed by OpenAI Responses API."""

    client: AsyncOpenAI

    @classmethod
    def create(
        cls,
        api_key: str,
        timeout_seconds: float,
        http_client: httpx.AsyncClient | None = None,
    ) -> "OpenAIAnalysisClient":
        """Create an OpenAI analysis client without SDK-level retries."""
        return cls(
            client=AsyncOpenAI(
                api_key=api_key,
                timeout=timeout_seconds,
                max_retries=0,
                http_client=http_client or httpx.AsyncClient(timeout=timeout_seconds),
            )
        )

    async def complete(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        prompt: str,
        schema_name: str,
        schema: dict[str, object],
        image_url: str | None = None,
    ) -> dict[str, object]:
        """Call OpenAI Responses API with structured outputs."""
        content: list[dict[str, object]] = [{"type": "input_text", "text": prompt}]
        if image_url:
            content.append({"type": "input_image", "image_url": image_url})
        request_payload: dict[str, object] = {
            "model": model,
            "input": [{"role": "user", "content": content}],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "strict": True,
                    "schema": schema,
                }
            },
            "store": store,
        }
        if reasoning_effort:
            request_payload["reasoning"] = {"effort": reasoning_effort}

        try:
            response = await self.client.responses.create(**request_payload)
        except openai.RateLimitError as exc:
            raise AnalysisClientError(AnalysisFailureKind.QUOTA, str(exc)) from exc
        except openai.APITimeoutError as exc:
            raise AnalysisClientError(AnalysisFailureKind.TIMEOUT, str(exc)) from exc
        except openai.APIError as exc:
            raise AnalysisClientError(AnalysisFailureKind.UPSTREAM, str(exc)) from exc

        output_text = response.output_text
        if not output_text:
            raise AnalysisClientError(
                AnalysisFailureKind.MALFORMED, "OpenAI returned an empty response"
            )
        try:
            parsed = json.loads(output_text)
        except json.JSONDecodeError as exc:
            raise AnalysisClientError(
                AnalysisFailureKind.MALFORMED, "OpenAI returned invalid JSON"
            ) from exc
        if not isinstance(parsed, dict):
            raise AnalysisClientError(
                AnalysisFailureKind.MALFORMED, "OpenAI returned a non-object answer"
            )
        return parsed

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()
