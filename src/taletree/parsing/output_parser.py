from __future__ import annotations

import json
import re
from typing import TypeVar

from pydantic import BaseModel, ValidationError

T = TypeVar("T", bound=BaseModel)

_TRAILING_COMMA = re.compile(r",\s*([}\]])")


class OutputParser:
    """Parse LLM text output into validated Pydantic models."""

    @staticmethod
    def extract_json(text: str) -> str:
        """Best-effort extraction of the JSON object embedded in *text*.

        Handles common LLM patterns:
        - Raw JSON objects
        - JSON wrapped in ```json ... ``` fences
        - JSON embedded in surrounding prose (first ``{`` to its matching ``}``)
        """
        fenced = re.search(r"```(?:json)?\s*\n?(.*?)```", text, re.DOTALL)
        if fenced:
            text = fenced.group(1)

        start = text.find("{")
        if start == -1:
            return text.strip()

        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        # Unbalanced; fall back to the last closing brace
        end = text.rfind("}")
        return text[start : end + 1] if end > start else text[start:]

    @staticmethod
    def parse(text: str, model: type[T]) -> T:
        """Extract JSON from *text* and validate against *model*.

        Raises ``ValueError`` when no attempt yields a valid instance.
        """
        if not text or not text.strip():
            raise ValueError(f"Empty LLM output, expected {model.__name__}")

        candidate = OutputParser.extract_json(text)
        attempts = [text.strip(), candidate, _TRAILING_COMMA.sub(r"\1", candidate)]

        last_error: Exception | None = None
        for attempt in attempts:
            try:
                data = json.loads(attempt)
            except json.JSONDecodeError as exc:
                last_error = exc
                continue
            if not isinstance(data, dict):
                last_error = ValueError(f"Expected a JSON object, got {type(data).__name__}")
                continue
            try:
                return model.model_validate(data)
            except ValidationError as exc:
                # The JSON was found; its shape is wrong and repairs won't help.
                raise ValueError(
                    f"LLM output does not match {model.__name__}: {exc}"
                ) from exc

        raise ValueError(
            f"Could not parse LLM output into {model.__name__}.\n"
            f"Raw text (first 500 chars): {text[:500]}"
        ) from last_error

    @staticmethod
    def format_instructions(model: type[BaseModel]) -> str:
        """Generate format instructions from a Pydantic model's JSON schema."""
        schema = model.model_json_schema()
        schema_str = json.dumps(schema, indent=2)
        return (
            "The output should be formatted as a JSON instance that conforms "
            "to the JSON schema below.\n\n"
            f"```json\n{schema_str}\n```\n\n"
            "Return ONLY the JSON object, no additional text."
        )
