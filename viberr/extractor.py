# viberr/extractor.py
"""
Structured Response Extractor.

The model is told to answer with JSON only, but it may wrap the payload in
code fences, add prose, or drop fields. Everything here turns that raw text
into a fully typed value:

    raw text -> strip fences -> parse -> merge over schema defaults -> normalize

Parsing never raises past this module. A parse failure yields the schema
defaults, or, for conversational variants, the stripped text as the message.
"""
import copy
import logging
import math
import re

from viberr.utils import Utils

logger = logging.getLogger("viberr_backend")

BRAND_DEFAULTS = {"options": []}
DECOMPOSE_DEFAULTS = {"items": []}
SPEC_DEFAULTS = {"spec": {}}
BUILD_DEFAULTS = {"steps": []}
REVISION_DEFAULTS = {"message": "", "applying": False, "changes": None}
INTAKE_DEFAULTS = {"message": "", "points": None}

DEFAULT_PALETTE = {
    "primary": "#4f46e5",
    "secondary": "#6366f1",
    "accent": "#f59e0b",
    "background": "#ffffff",
    "text": "#111827",
}
DEFAULT_FONT = {"heading": "Inter", "body": "Inter"}

CHAT_FALLBACK_MESSAGE = "I couldn't generate a response."
UNDERSTOOD_FALLBACK_MESSAGE = "I couldn't understand that."

MAX_INTAKE_POINTS = 8
MAX_EMBEDDED_ATTEMPTS = 5
DEFAULT_STEP_DURATION = 2000

_HEX6 = re.compile(r"^#?([0-9a-fA-F]{6})$")
_HEX3 = re.compile(r"^#?([0-9a-fA-F]{3})$")
_FLAT_MESSAGE_JSON = re.compile(r'\{[^{}]*"message"[^{}]*\}')


class StructuredExtractor(Utils):

    # -----------------------
    # Generic boundary
    # -----------------------

    def extract(self, raw, defaults: dict, text_field: str | None = None) -> dict:
        """
        Returns `defaults` with every parsed top-level key merged over it.
        Missing or null fields keep their default.
        On parse failure returns a copy of `defaults`; when `text_field` is
        given, the stripped text is placed there instead of being discarded.
        """
        result = copy.deepcopy(defaults)
        text = self.clean_triple_backticks(raw if isinstance(raw, str) else "")

        data, err = self.load_json(text)
        if isinstance(data, dict):
            for k, v in data.items():
                if v is None and k in result:
                    continue
                result[k] = v
            return result

        if err:
            logger.warning("Structured output not parseable (%s); preview=%r", err.splitlines()[0], text[:200])
        else:
            logger.warning("Structured output is not an object: %r", text[:200])

        if text_field and text:
            result[text_field] = text
        return result

    def extract_text(self, raw, fallback: str = CHAT_FALLBACK_MESSAGE) -> str:
        text = raw.strip() if isinstance(raw, str) else ""
        return text or fallback

    # -----------------------
    # Scalar coercion
    # -----------------------

    def _as_str(self, value, default: str = "") -> str:
        text = self._coerce_field_to_str(value)
        return text or default

    def _as_str_list(self, value) -> list[str]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, list):
            return []
        out = []
        for v in value:
            if isinstance(v, (dict, list)) or v is None:
                continue
            s = str(v).strip()
            if s:
                out.append(s)
        return out

    def _as_bool(self, value) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() == "true"
        return False

    def _as_positive_number(self, value):
        if isinstance(value, bool):
            return None
        if isinstance(value, str):
            cleaned = value.strip().replace("$", "").replace(",", "")
            try:
                value = float(cleaned)
            except ValueError:
                return None
        if not isinstance(value, (int, float)):
            return None
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                return None
            if value.is_integer():
                value = int(value)
        return value if value > 0 else None

    def _as_hex_color(self, value, default: str) -> str:
        if not isinstance(value, str):
            return default
        value = value.strip()
        m = _HEX6.match(value)
        if m:
            return "#" + m.group(1).lower()
        m = _HEX3.match(value)
        if m:
            return "#" + "".join(c * 2 for c in m.group(1)).lower()
        return default

    # -----------------------
    # Variant normalizers
    # -----------------------

    def normalize_brand_options(self, options) -> list[dict]:
        out = []
        if not isinstance(options, list):
            return out
        for i, opt in enumerate(options):
            if not isinstance(opt, dict):
                continue
            colors = opt.get("colors") if isinstance(opt.get("colors"), dict) else {}
            font = opt.get("font") if isinstance(opt.get("font"), dict) else {}
            out.append({
                "name": self._as_str(opt.get("name"), f"Direction {i + 1}"),
                "vibe": self._as_str(opt.get("vibe")),
                "colors": {
                    slot: self._as_hex_color(colors.get(slot), fallback)
                    for slot, fallback in DEFAULT_PALETTE.items()
                },
                "font": {
                    slot: self._as_str(font.get(slot), fallback)
                    for slot, fallback in DEFAULT_FONT.items()
                },
                "domains": self._as_str_list(opt.get("domains")),
            })
        return out

    def normalize_decomposition(self, items) -> list[dict]:
        out = []
        if not isinstance(items, list):
            return out
        for item in items:
            if not isinstance(item, dict):
                continue
            feature = self._as_str(item.get("feature"))
            if not feature:
                continue
            tasks = []
            for task in item.get("tasks") or []:
                if not isinstance(task, dict):
                    continue
                name = self._as_str(task.get("name"))
                price = self._as_positive_number(task.get("price"))
                if not name or price is None:
                    logger.debug("Dropping task without name/positive price: %r", task)
                    continue
                tasks.append({
                    "name": name,
                    "description": self._as_str(task.get("description")),
                    "price": price,
                })
            out.append({"feature": feature, "tasks": tasks})
        return out

    def normalize_spec(self, spec) -> dict:
        if not isinstance(spec, dict):
            spec = {}
        sections = []
        for section in spec.get("sections") or []:
            if not isinstance(section, dict):
                continue
            title = self._as_str(section.get("title"))
            if not title:
                continue
            sections.append({"title": title, "items": self._as_str_list(section.get("items"))})
        return {
            "summary": self._as_str(spec.get("summary")),
            "sections": sections,
            "tech": self._as_str_list(spec.get("tech")),
            "timeline": self._as_str(spec.get("timeline")),
            "notes": self._as_str(spec.get("notes")),
        }

    def normalize_build_steps(self, steps) -> list[dict]:
        out = []
        if not isinstance(steps, list):
            return out
        for step in steps:
            if not isinstance(step, dict):
                continue
            label = self._as_str(step.get("label"))
            if not label:
                continue
            duration = self._as_positive_number(step.get("duration"))
            out.append({
                "id": self._as_str(step.get("id"), f"step-{len(out) + 1}"),
                "label": label,
                "detail": self._as_str(step.get("detail")),
                "duration": int(duration) if duration else DEFAULT_STEP_DURATION,
            })
        return out

    def normalize_revision(self, data: dict) -> dict:
        applying = self._as_bool(data.get("applying"))
        changes = self._as_str_list(data.get("changes")) if applying else []
        return {
            "message": self._as_str(data.get("message"), UNDERSTOOD_FALLBACK_MESSAGE),
            "applying": applying,
            "changes": changes or None,
        }

    def normalize_intake(self, data: dict) -> dict:
        points = self._as_str_list(data.get("points"))[:MAX_INTAKE_POINTS]
        return {
            "message": self._as_str(data.get("message"), UNDERSTOOD_FALLBACK_MESSAGE),
            "points": points or None,
        }

    # -----------------------
    # Per-variant entry points
    # -----------------------

    def extract_brand_options(self, raw) -> list[dict]:
        data = self.extract(raw, BRAND_DEFAULTS)
        return self.normalize_brand_options(data.get("options"))

    def extract_decomposition(self, raw) -> list[dict]:
        data = self.extract(raw, DECOMPOSE_DEFAULTS)
        return self.normalize_decomposition(data.get("items"))

    def extract_spec(self, raw) -> dict:
        data = self.extract(raw, SPEC_DEFAULTS)
        return self.normalize_spec(data.get("spec"))

    def extract_build_steps(self, raw) -> list[dict]:
        data = self.extract(raw, BUILD_DEFAULTS)
        return self.normalize_build_steps(data.get("steps"))

    def extract_revision(self, raw) -> dict:
        data = self.extract(raw, REVISION_DEFAULTS, text_field="message")
        return self.normalize_revision(data)

    def _find_trailing_message_json(self, text: str):
        """
        The model sometimes writes a sentence and then the JSON object.
        Tries the first few '{' positions as the start of an object running to the end.
        """
        if not text.endswith("}"):
            return None
        start = text.find("{")
        for _attempt in range(MAX_EMBEDDED_ATTEMPTS):
            if start < 0:
                return None
            data, _err = self.load_json(text[start:])
            if isinstance(data, dict) and "message" in data:
                return text[start:]
            start = text.find("{", start + 1)
        return None

    def extract_intake(self, raw) -> dict:
        text = self.clean_triple_backticks(raw if isinstance(raw, str) else "")
        data, _ = self.load_json(text)
        if not isinstance(data, dict) and text:
            embedded = self._find_trailing_message_json(text)
            if embedded is not None:
                return self.normalize_intake(self.extract(embedded, INTAKE_DEFAULTS))
            cleaned = _FLAT_MESSAGE_JSON.sub("", text).strip()
            return self.normalize_intake({"message": cleaned or text, "points": None})
        return self.normalize_intake(self.extract(text, INTAKE_DEFAULTS, text_field="message"))
