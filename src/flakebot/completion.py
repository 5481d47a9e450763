"""Chat-completion client for the OpenAI-compatible Groq endpoint."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, List, Optional, Tuple

import openai
from openai import OpenAI

from .models import ChatChoice, ChatMessage, ChatRequest, ChatResponse, ValidationVerdict
from .templates import (
    ADD_DEPENDENCY_TEMPLATE,
    COMMIT_MESSAGE_TEMPLATE,
    CRATE_DESCRIPTION_TEMPLATE,
    CRATES_TEMPLATE,
    INTERACTION_INSTRUCTIONS_TEMPLATE,
    PR_MESSAGE_TEMPLATE,
    PR_TITLE_TEMPLATE,
    REWRITE_MAIN_RS_TEMPLATE,
    VALIDATE_PROGRAM_TEMPLATE,
    render,
)

logger = logging.getLogger(__name__)

SATISFIED_TOKEN = "Correct"

# Rate limiting and transport trouble; everything else is fatal for the call.
RETRYABLE_ERRORS = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.InternalServerError,
)


class CompletionError(RuntimeError):
    """Raised when a completion cannot be obtained or understood."""


def _strip_fences(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if not line.lstrip().startswith("```")]
    return "\n".join(lines).strip()


def _parse_structured_verdict(text: str) -> Optional[ValidationVerdict]:
    try:
        payload = json.loads(_strip_fences(text))
    except (TypeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("satisfied"), bool):
        return None
    if payload["satisfied"]:
        return ValidationVerdict.satisfied_verdict()
    instructions = payload.get("instructions")
    if not isinstance(instructions, str) or not instructions.strip():
        instructions = text
    return ValidationVerdict.needs_change(instructions)


def parse_verdict(text: str) -> ValidationVerdict:
    """Classify a validator response.

    The structured form is a JSON object with a boolean ``satisfied`` field.
    Older prompts answered in free text where a first word of exactly
    ``Correct`` meant success; that form is still accepted, and any other
    text is returned in full as the repair instructions.
    """
    structured = _parse_structured_verdict(text)
    if structured is not None:
        return structured
    if text.split(maxsplit=1)[:1] == [SATISFIED_TOKEN]:
        return ValidationVerdict.satisfied_verdict()
    return ValidationVerdict.needs_change(text)


class CompletionClient:
    """Thin wrapper around the chat completions API with fixed-interval retry.

    Retryable failures are retried forever unless ``max_attempts`` is set.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str,
        *,
        retry_interval: float = 10.0,
        max_attempts: Optional[int] = None,
        client: Optional[Any] = None,
    ) -> None:
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self._model = model
        self._retry_interval = retry_interval
        self._max_attempts = max_attempts

    def request_chat_completion(self, prompt: str) -> ChatResponse:
        """Send a single user message and return the parsed response."""
        request = ChatRequest.from_prompt(self._model, prompt)
        attempt = 0
        while True:
            attempt += 1
            try:
                raw = self._client.chat.completions.create(**request.to_kwargs())
            except RETRYABLE_ERRORS as exc:
                if self._max_attempts is not None and attempt >= self._max_attempts:
                    logger.error("Completion request failed after %s attempts: %s", attempt, exc)
                    raise CompletionError(f"Completion request failed after {attempt} attempts: {exc}") from exc
                logger.warning(
                    "Hit completion API limits (attempt %s): %s. Backing off for %ss...",
                    attempt,
                    exc,
                    self._retry_interval,
                )
                time.sleep(self._retry_interval)
                continue
            except openai.OpenAIError as exc:
                logger.error("Completion request failed: %s", exc)
                raise CompletionError(f"Completion request failed: {exc}") from exc
            return self._to_chat_response(raw)

    @staticmethod
    def _to_chat_response(raw: Any) -> ChatResponse:
        choices = getattr(raw, "choices", None)
        if choices is None:
            raise CompletionError("Malformed completion payload: missing choices")
        parsed: List[ChatChoice] = []
        for position, choice in enumerate(choices):
            message = getattr(choice, "message", None)
            if message is None:
                raise CompletionError("Malformed completion payload: choice without message")
            parsed.append(
                ChatChoice(
                    index=getattr(choice, "index", position),
                    message=ChatMessage(
                        role=getattr(message, "role", "assistant") or "assistant",
                        content=getattr(message, "content", None) or "",
                    ),
                    finish_reason=getattr(choice, "finish_reason", None),
                )
            )
        return ChatResponse(choices=parsed, model=getattr(raw, "model", None))

    def complete(self, prompt: str) -> str:
        """Return the content of the first completion for ``prompt``."""
        content = self.request_chat_completion(prompt).first_content()
        if content is None:
            logger.error("No choices returned in the response")
            raise CompletionError("No choices in response")
        return content

    def identify_crates(self, instructions: str) -> List[str]:
        content = self.complete(render(CRATES_TEMPLATE, user_instructions=instructions)).strip()
        if "," not in content:
            logger.error("Response did not follow the expected comma-separated format: %s", content)
            raise CompletionError(f"Invalid crate list format: {content!r}")
        return [name.strip() for name in content.split(",") if name.strip()]

    def describe_crate(self, cargo_toml: str, readme: str, main_rs: str) -> str:
        return self.complete(
            render(
                CRATE_DESCRIPTION_TEMPLATE,
                cargo_toml_contents=cargo_toml,
                readme_contents=readme,
                main_rs_contents=main_rs,
            )
        ).strip()

    def validate_program(self, instructions: str, main_rs: str, errors: str = "None") -> ValidationVerdict:
        content = self.complete(
            render(
                VALIDATE_PROGRAM_TEMPLATE,
                user_instructions=instructions,
                main_rs_contents=main_rs,
                errors=errors,
            )
        )
        return parse_verdict(content)

    def rewrite_main_rs(self, instructions: str, main_rs: str) -> str:
        return self.complete(
            render(REWRITE_MAIN_RS_TEMPLATE, user_instructions=instructions, main_rs_contents=main_rs)
        )

    def dependency_command(self, main_rs: str) -> str:
        return _strip_fences(self.complete(render(ADD_DEPENDENCY_TEMPLATE, main_rs_contents=main_rs)))

    def interaction_instructions(self, main_rs: str) -> str:
        return self.complete(render(INTERACTION_INSTRUCTIONS_TEMPLATE, main_rs_contents=main_rs)).strip()

    def commit_message(self, diff: str) -> str:
        return self.complete(render(COMMIT_MESSAGE_TEMPLATE, git_diff=diff)).strip().strip('"')

    def proposal_message_and_title(self, diff: str) -> Tuple[str, str]:
        """Return ``(title, body)``; the title is written from the body."""
        body = self.complete(render(PR_MESSAGE_TEMPLATE, git_diff=diff)).strip()
        title = self.complete(render(PR_TITLE_TEMPLATE, pr_message=body)).strip().strip('"')
        return title, body
