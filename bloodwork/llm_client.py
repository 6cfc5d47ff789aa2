from __future__ import annotations

import json
import logging
import re
from typing import Any, Sequence

import requests
from jsonschema import ValidationError, validate

from bloodwork.config import settings
from bloodwork.fallback import FallbackChain, Outcome, attempt

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a precise medical lab data extraction engine."

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


class LLMError(RuntimeError):
    pass


class LLMTimeoutError(LLMError):
    pass


class LLMClient:
    """OpenRouter chat-completions client with structured and plain-text modes."""

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        self.api_key = api_key or settings.openrouter_api_key
        if not self.api_key:
            raise LLMError("OPENROUTER_API_KEY is missing. Set it in environment or .env.")
        self.timeout = timeout or settings.llm_timeout_seconds

    def generate_json(
        self,
        model: str,
        prompt: str,
        schema: dict[str, Any],
        schema_name: str,
        max_output_tokens: int,
        temperature: float = 0.0,
    ) -> dict[str, Any]:
        payload = self._payload(model, prompt, max_output_tokens, temperature)
        payload["response_format"] = {
            "type": "json_schema",
            "json_schema": {"name": schema_name, "strict": False, "schema": schema},
        }
        text = self._post(payload)
        parsed = parse_json_from_text(text)
        return _validated(parsed, schema)

    def generate_text(
        self,
        model: str,
        prompt: str,
        max_output_tokens: int,
        temperature: float = 0.0,
    ) -> str:
        return self._post(self._payload(model, prompt, max_output_tokens, temperature))

    @staticmethod
    def _payload(model: str, prompt: str, max_output_tokens: int, temperature: float) -> dict[str, Any]:
        return {
            "model": model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_output_tokens,
        }

    def _post(self, payload: dict[str, Any]) -> str:
        url = f"{settings.openrouter_api_base}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}
        try:
            response = requests.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout as exc:
            raise LLMTimeoutError(f"Request to {payload['model']} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise LLMError(f"Request to {payload['model']} failed: {exc}") from exc

        if response.status_code >= 300:
            raise LLMError(f"OpenRouter API error {response.status_code}: {response.text[:500]}")

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMError(f"OpenRouter returned non-JSON body: {response.text[:300]}") from exc
        return self._extract_text(data)

    @staticmethod
    def _extract_text(api_response: dict[str, Any]) -> str:
        try:
            choices = api_response["choices"]
            content = choices[0]["message"]["content"]
            if isinstance(content, list):
                content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
            if not content:
                raise ValueError("empty model text")
            return content
        except Exception as exc:  # noqa: BLE001
            raise LLMError(f"Failed to parse OpenRouter response: {str(api_response)[:500]}") from exc


def parse_json_from_text(text: str) -> Any:
    trimmed = (text or "").strip()
    if not trimmed:
        raise LLMError("Model returned empty text")

    fenced = _FENCE_RE.search(trimmed)
    candidates = [fenced.group(1), trimmed] if fenced else [trimmed]

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            pass

        for opener, closer in (("{", "}"), ("[", "]")):
            start = candidate.find(opener)
            end = candidate.rfind(closer)
            if start >= 0 and end > start:
                try:
                    return json.loads(candidate[start : end + 1])
                except json.JSONDecodeError:
                    continue

    raise LLMError(f"Could not parse JSON from model output: {trimmed[:300]}")


def _validated(parsed: Any, schema: dict[str, Any]) -> dict[str, Any]:
    try:
        validate(instance=parsed, schema=schema)
    except ValidationError as exc:
        raise LLMError(f"Model output failed schema validation: {exc.message}") from exc
    return parsed


def generate_with_fallback(
    client: LLMClient,
    model_ids: Sequence[str],
    prompt: str,
    schema: dict[str, Any],
    schema_name: str,
    max_output_tokens: int,
    context_label: str,
) -> tuple[dict[str, Any], str]:
    """Try every model in order; structured mode first, then text mode on the same model.

    A timeout skips straight to the next model. Returns ``(object, model_id)``.
    """
    text_prompt = "\n".join([prompt, "", "Return only valid JSON.", "Do not wrap JSON in markdown."])

    def text_mode(model_id: str) -> dict[str, Any]:
        raw = client.generate_text(model_id, text_prompt, max_output_tokens)
        return _validated(parse_json_from_text(raw), schema)

    failures: list[Outcome] = []
    for model_id in model_ids:
        structured = attempt(
            f"{model_id} structured",
            client.generate_json,
            model_id,
            prompt,
            schema,
            schema_name,
            max_output_tokens,
            catch=(LLMError,),
        )
        if structured.ok:
            return structured.value, model_id
        failures.append(structured)
        if isinstance(structured.error, LLMTimeoutError):
            logger.warning("%s: %s timed out, trying next model", context_label, model_id)
            continue

        text = attempt(f"{model_id} text", text_mode, model_id, catch=(LLMError,))
        if text.ok:
            return text.value, model_id
        failures.append(text)

    summary = FallbackChain(outcome=failures[-1] if failures else Outcome(), failures=failures)
    raise LLMError(
        f"All model attempts failed for {context_label}. Attempted: {', '.join(model_ids)}. "
        f"Errors: {summary.describe_failures()}"
    )
