import logging
import time
from typing import Any, Dict, List, Optional

import anthropic
import openai
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from viberr.errors import UpstreamRejected, UpstreamUnavailable
from viberr.model_props import parse_model_name, provider_for_model

logger = logging.getLogger("viberr_backend")


def _error_body(e: Exception) -> str:
    response = getattr(e, "response", None)
    text = getattr(response, "text", None)
    if text:
        return str(text)
    body = getattr(e, "body", None)
    return "" if body is None else str(body)


class BaseLlmClient:
    """
    Common usage accounting for both providers.
    """

    last_usage: Optional[Dict[str, int]]

    def _merge_usage(self, resp: Any) -> None:
        if resp is None:
            return
        usage = getattr(resp, "usage", None)
        if usage is None:
            return
        inc = {
            "input_tokens": int(getattr(usage, "input_tokens", 0) or 0),
            "output_tokens": int(getattr(usage, "output_tokens", 0) or 0),
        }
        if self.last_usage is None:
            self.last_usage = inc
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + v


class ChatLlmClient(BaseLlmClient):
    """
    Single-call generation gateway:

        text = client.generate(system_instruction, [HumanMessage(...), AIMessage(...)], max_tokens=1024)

    Under the hood:
    - Anthropic: Messages API (client.messages.create)
    - OpenAI: Responses API with input=[{role, content}, ...]

    No retries: SDK clients are built with max_retries=0 and every failure is
    surfaced once as UpstreamUnavailable / UpstreamRejected.
    """

    def __init__(
        self,
        model_name: str,
        *,
        api_key: str,
        timeout: float | None = None,
    ):
        self.provider = provider_for_model(model_name)
        self.model_name = model_name
        self._timeout = timeout
        self.last_usage: Optional[Dict[str, int]] = None
        self._openai_params: Dict[str, Any] = {}

        client_kwargs: Dict[str, Any] = {"api_key": api_key, "max_retries": 0}
        if timeout is not None:
            client_kwargs["timeout"] = timeout

        if self.provider == "anthropic":
            self._client = anthropic.Anthropic(**client_kwargs)
        elif self.provider == "openai":
            self.model_name, self._openai_params = parse_model_name(self.model_name)
            self._client = openai.OpenAI(**client_kwargs)
        else:
            raise ValueError(f"Unknown LLM provider: {self.provider}")

    def _to_role_messages(self, messages: List[HumanMessage | AIMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, AIMessage):
                role = "assistant"
            elif isinstance(m, HumanMessage):
                role = "user"
            elif isinstance(m, SystemMessage):
                # system text belongs in the instruction, not the turn list
                continue
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    def _generate_anthropic(self, system_instruction: str, messages: List[Dict[str, str]], max_tokens: int) -> str:
        try:
            resp = self._client.messages.create(
                model=self.model_name,
                max_tokens=max_tokens,
                system=system_instruction,
                messages=messages,
            )
        except anthropic.APIConnectionError as e:
            raise UpstreamUnavailable(str(e)) from e
        except anthropic.APIStatusError as e:
            raise UpstreamRejected(e.status_code, _error_body(e)) from e

        self._merge_usage(resp)
        for block in getattr(resp, "content", None) or []:
            if getattr(block, "type", None) == "text":
                return getattr(block, "text", "") or ""
        return ""

    def _generate_openai(self, system_instruction: str, messages: List[Dict[str, str]], max_tokens: int) -> str:
        try:
            resp = self._client.responses.create(
                model=self.model_name,
                instructions=system_instruction,
                input=messages,
                max_output_tokens=max_tokens,
                **self._openai_params,
            )
        except openai.APIConnectionError as e:
            raise UpstreamUnavailable(str(e)) from e
        except openai.APIStatusError as e:
            raise UpstreamRejected(e.status_code, _error_body(e)) from e

        self._merge_usage(resp)
        return getattr(resp, "output_text", "") or ""

    def generate(
        self,
        system_instruction: str,
        messages: List[HumanMessage | AIMessage],
        max_tokens: int = 1024,
    ) -> str:
        """
        Synchronous single call. Returns the raw text of the first text block
        (empty string when the provider returned none).
        """
        role_messages = self._to_role_messages(messages)
        start_time = time.time()
        logger.debug(
            "LLM request: provider=%s model=%s max_tokens=%d messages=%d",
            self.provider, self.model_name, max_tokens, len(role_messages),
        )

        if self.provider == "anthropic":
            text = self._generate_anthropic(system_instruction, role_messages, max_tokens)
        else:
            text = self._generate_openai(system_instruction, role_messages, max_tokens)

        logger.debug(
            "LLM response: model=%s elapsed=%.2fs usage=%s chars=%d",
            self.model_name, time.time() - start_time, self.last_usage, len(text),
        )
        return text
