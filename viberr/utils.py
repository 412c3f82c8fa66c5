import json
import logging
import re

import commentjson
from langchain_core.messages import AIMessage, HumanMessage

logger = logging.getLogger("viberr_backend")

HISTORY_LIMIT = 20

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\n?```\s*$")


class Utils():

    # -----------------------
    # General Utils
    # -----------------------

    def clean_triple_backticks(self, text) -> str:
        """
        Removes one leading ``` / ```json marker and one trailing ``` marker.
        Text without fences only gets trimmed.
        """
        text = (text or "").strip()
        text = _LEADING_FENCE.sub("", text, count=1)
        text = _TRAILING_FENCE.sub("", text, count=1)
        return text.strip()

    def load_json(self, json_str):
        """
        Returns (data, "") on success, (None, err) otherwise. Never raises.
        Strict JSON first, then commentjson for outputs carrying // or # comments.
        """
        err = ""
        if not isinstance(json_str, str) or not json_str.strip():
            return None, "empty input"
        try:
            return json.loads(json_str), ""
        except RecursionError as e:
            # too deeply nested for either parser
            return None, f"nesting too deep: {e}"
        except ValueError as e:
            err = str(e)
        try:
            return commentjson.loads(json_str), ""
        except Exception as e:
            err += "\n--\n" + str(e)
        return None, err

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        try:
            return json.dumps(value)
        except TypeError:
            return str(value).strip()

    def _sanitize_for_filename(self, s: str) -> str:
        if not s:
            return ""
        # letters, digits, _ . - only
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", s)
        # "." and ".." would resolve to the parent directories
        if not safe.strip("."):
            safe = "_" * len(safe)
        return safe

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Fills {placeholders} in a prompt template, touching only the keys passed in kwargs.

        str.format would choke on the JSON examples embedded in the prompts; here any
        brace group that is not a known key is left as is.
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            else:
                missing_keys.append(key)
                return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{(\w+)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.debug(f"Missing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}")
        return result

    # -----------------------
    # Conversation history
    # -----------------------

    def _filter_history(self, history) -> list[dict]:
        """
        Keeps only entries carrying both a known role and some content.
        Anything else is dropped silently.
        """
        out: list[dict] = []
        if not isinstance(history, list):
            return out
        for item in history:
            if not isinstance(item, dict):
                continue
            role = item.get("role")
            content = item.get("content")
            if not role or not content:
                continue
            role = str(role).strip().lower()
            if role not in ("user", "assistant"):
                continue
            if not isinstance(content, str):
                content = str(content)
            out.append({"role": role, "content": content})
        return out

    def _bounded_history(self, history, message: str, limit: int = HISTORY_LIMIT) -> list[dict]:
        """
        Filtered history + the new user message, keeping only the last `limit` entries.
        """
        messages = self._filter_history(history)
        messages.append({"role": "user", "content": message})
        if len(messages) > limit:
            messages = messages[-limit:]
        return messages

    def _chat_queue_to_messages(self, queue) -> list:
        """
        Convert a list of {role, content} dicts into LangChain messages.
        """
        out = []
        for item in (queue or []):
            if not isinstance(item, dict):
                continue
            role = (item.get("role") or "").strip().lower()
            content = item.get("content", "")
            if not isinstance(content, str):
                content = str(content)

            if role == "assistant":
                out.append(AIMessage(content=content))
            else:
                out.append(HumanMessage(content=content))
        return out
