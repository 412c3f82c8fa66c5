# viberr/backend.py

import logging
from typing import Any, Callable

from langchain_core.messages import HumanMessage

from viberr.backend_prompts import (
    ASSISTANT_CHAT_PROMPT,
    BRAND_PROMPT,
    BRAND_USER_TEMPLATE,
    BUILD_PROMPT,
    BUILD_USER_TEMPLATE,
    DECOMPOSE_PROMPT,
    DECOMPOSE_USER_TEMPLATE,
    INTAKE_PROMPT,
    REVISION_PROMPT,
    SPEC_PROMPT,
    SPEC_USER_TEMPLATE,
)
from viberr.db_helpers import build_db_session_factory
from viberr.errors import ClientInputError, ConfigurationError, UpstreamFailure
from viberr.extractor import DEFAULT_PALETTE, StructuredExtractor
from viberr.llm_client import ChatLlmClient
from viberr.model_props import provider_for_model
from viberr.notifier import Notifier
from viberr.records_store import SubmissionStore, UploadStore
from viberr.session_store import SessionStore, SqlSessionStore, make_message
from viberr.settings import (
    CHAT_MODEL,
    LLM_TIMEOUT,
    PROVIDER_CREDENTIAL_ENV,
    STRUCTURED_MODEL,
    get_env_credential,
    submissions_dir,
    uploads_dir,
)
from viberr.utils import Utils

logger = logging.getLogger("viberr_backend")

CHAT_MAX_TOKENS = 1024
STRUCTURED_MAX_TOKENS = 2048
SPEC_MAX_TOKENS = 3000


class Backend(Utils):
    """
    Conversation controller. Every AI-backed handler follows the same path:

        validate input -> resolve credential -> assemble prompt
        -> one gateway call -> extract structured result -> (persist) -> return

    No retries and no caching: the same request twice means two upstream calls.
    """

    def __init__(
        self,
        assistant_store: SessionStore,
        chat_store: SessionStore,
        submissions: SubmissionStore,
        uploads: UploadStore,
        notifier: Notifier | None = None,
        llm_factory: Callable[..., Any] = ChatLlmClient,
        chat_model: str = CHAT_MODEL,
        structured_model: str = STRUCTURED_MODEL,
        llm_timeout: float | None = LLM_TIMEOUT,
    ):
        self.assistant_store = assistant_store
        self.chat_store = chat_store
        self.submissions = submissions
        self.uploads = uploads
        self.notifier = notifier or Notifier()
        self.llm_factory = llm_factory
        self.chat_model = chat_model
        self.structured_model = structured_model
        self.llm_timeout = llm_timeout
        self.extractor = StructuredExtractor()

    @classmethod
    def from_settings(cls) -> "Backend":
        session_factory = build_db_session_factory()
        return cls(
            assistant_store=SqlSessionStore(session_factory, namespace="assistant"),
            chat_store=SqlSessionStore(session_factory, namespace="chat"),
            submissions=SubmissionStore(submissions_dir()),
            uploads=UploadStore(uploads_dir()),
        )

    # -----------------------
    # Input validation
    # -----------------------

    def _is_blank(self, value) -> bool:
        if value is None:
            return True
        if isinstance(value, str):
            return not value.strip()
        if isinstance(value, (list, dict)):
            return len(value) == 0
        return False

    def _require(self, payload: dict, *fields: str) -> None:
        missing = [f for f in fields if self._is_blank(payload.get(f))]
        if missing:
            raise ClientInputError(f"Missing {' or '.join(missing)}")

    def _as_dict(self, value) -> dict:
        return value if isinstance(value, dict) else {}

    # -----------------------
    # LLM plumbing
    # -----------------------

    def _build_llm(self, model_name: str):
        """
        Resolves the provider credential for `model_name` at call time.
        Raises ConfigurationError before any upstream traffic when it is absent.
        """
        try:
            provider = provider_for_model(model_name)
        except ValueError as e:
            logger.error("Invalid model configuration: %s", e)
            raise ConfigurationError("AI model not configured") from e

        env_name = PROVIDER_CREDENTIAL_ENV[provider]
        api_key = get_env_credential(env_name)
        if not api_key:
            logger.error("%s is not set; refusing AI request", env_name)
            raise ConfigurationError(f"{provider.capitalize()} API key not configured")

        return self.llm_factory(model_name, api_key=api_key, timeout=self.llm_timeout)

    def _generate(self, llm, label: str, system_instruction: str, messages: list, max_tokens: int) -> str:
        try:
            return llm.generate(system_instruction, messages, max_tokens=max_tokens)
        except UpstreamFailure as e:
            status = getattr(e, "upstream_status", None)
            body = getattr(e, "body", None) or getattr(e, "detail", "")
            logger.error(f"{label} API error: status={status} body={str(body)[:500]}")
            raise

    # -----------------------
    # Continuous variants
    # -----------------------

    def handle_assistant_chat(self, payload: dict) -> dict:
        payload = payload or {}
        self._require(payload, "slug", "message")
        slug = str(payload["slug"]).strip()
        message = str(payload["message"])
        project_name = (payload.get("projectName") or "").strip() or slug

        llm = self._build_llm(self.chat_model)

        system_instruction = self.unsafe_string_format(ASSISTANT_CHAT_PROMPT, project_name=project_name)

        # one turn at a time per slug: load, call and append under the same lock
        with self.assistant_store.lock(slug):
            history = self._filter_history(self.assistant_store.load(slug))
            queue = history + [{"role": "user", "content": message}]

            raw = self._generate(llm, "Assistant chat", system_instruction, self._chat_queue_to_messages(queue), CHAT_MAX_TOKENS)
            reply = self.extractor.extract_text(raw)

            log = self.assistant_store.extend(
                slug,
                [make_message("user", message), make_message("assistant", reply)],
            )

        return {"response": reply, "messageCount": len(log)}

    def handle_chat_message(self, payload: dict) -> dict:
        payload = payload or {}
        self._require(payload, "slug", "message")
        slug = str(payload["slug"]).strip()

        log = self.chat_store.append(slug, make_message("user", str(payload["message"])))
        return {"success": True, "count": len(log)}

    def list_chat_messages(self, slug: str | None) -> list[dict]:
        if self._is_blank(slug):
            raise ClientInputError("Missing slug parameter")
        return [
            {"from": m.get("role"), "text": m.get("content"), "timestamp": m.get("timestamp")}
            for m in self.chat_store.load(slug.strip())
        ]

    # -----------------------
    # Stateless structured variants
    # -----------------------

    def handle_brand(self, payload: dict) -> dict:
        payload = payload or {}
        self._require(payload, "description")
        features = payload.get("features")

        llm = self._build_llm(self.structured_model)

        feature_context = ""
        if isinstance(features, list) and features:
            feature_context = "\n\nKey features: " + ", ".join(str(f) for f in features)
        user_prompt = self.unsafe_string_format(
            BRAND_USER_TEMPLATE,
            description=str(payload["description"]).strip(),
            feature_context=feature_context,
        )

        raw = self._generate(llm, "Brand", BRAND_PROMPT, [HumanMessage(content=user_prompt)], STRUCTURED_MAX_TOKENS)
        return {"options": self.extractor.extract_brand_options(raw)}

    def handle_decompose(self, payload: dict) -> dict:
        payload = payload or {}
        features = payload.get("features")
        if not isinstance(features, list) or not features:
            raise ClientInputError("Missing features")

        llm = self._build_llm(self.structured_model)

        feature_list = "\n".join(f"{i + 1}. {f}" for i, f in enumerate(features))
        user_prompt = self.unsafe_string_format(DECOMPOSE_USER_TEMPLATE, feature_list=feature_list)

        raw = self._generate(llm, "Decompose", DECOMPOSE_PROMPT, [HumanMessage(content=user_prompt)], STRUCTURED_MAX_TOKENS)
        return {"items": self.extractor.extract_decomposition(raw)}

    def _format_feature_block(self, features: list) -> str:
        blocks = []
        for f in features:
            if not isinstance(f, dict):
                blocks.append(str(f))
                continue
            task_lines = []
            tasks = f.get("tasks") if isinstance(f.get("tasks"), list) else []
            for t in tasks:
                if isinstance(t, dict):
                    task_lines.append(f"  - {t.get('name', '')}: {t.get('description', '')} (${t.get('price', 0)})")
            blocks.append(f"{f.get('feature', '')}:\n" + "\n".join(task_lines))
        return "\n\n".join(blocks)

    def _format_brand_block(self, brand: dict) -> str:
        colors = self._as_dict(brand.get("colors"))
        font = self._as_dict(brand.get("font"))
        domains = brand.get("domains") if isinstance(brand.get("domains"), list) else []
        domain = brand.get("domain") or (domains[0] if domains else None) or "TBD"
        return (
            f"Brand: {brand.get('name', 'Custom')}\n"
            f"Colors: primary {colors.get('primary', DEFAULT_PALETTE['primary'])}, "
            f"secondary {colors.get('secondary', DEFAULT_PALETTE['secondary'])}, "
            f"accent {colors.get('accent', DEFAULT_PALETTE['accent'])}, "
            f"bg {colors.get('background', DEFAULT_PALETTE['background'])}, "
            f"text {colors.get('text', DEFAULT_PALETTE['text'])}\n"
            f"Typography: {font.get('heading', 'Inter')} (headings), {font.get('body', 'Inter')} (body)\n"
            f"Domain: {domain}"
        )

    def handle_spec(self, payload: dict) -> dict:
        payload = payload or {}
        self._require(payload, "description", "features", "brand")
        features = payload["features"]
        brand = payload["brand"]
        if not isinstance(features, list):
            raise ClientInputError("Missing features")
        if not isinstance(brand, dict):
            raise ClientInputError("Missing brand")

        llm = self._build_llm(self.structured_model)

        user_prompt = self.unsafe_string_format(
            SPEC_USER_TEMPLATE,
            description=str(payload["description"]).strip(),
            feature_block=self._format_feature_block(features),
            brand_block=self._format_brand_block(brand),
            total=payload.get("total") or 0,
        )

        raw = self._generate(llm, "Spec", SPEC_PROMPT, [HumanMessage(content=user_prompt)], SPEC_MAX_TOKENS)
        return {"spec": self.extractor.extract_spec(raw)}

    def handle_build(self, payload: dict) -> dict:
        payload = payload or {}
        self._require(payload, "spec", "brand")
        spec = self._as_dict(payload["spec"])
        brand = self._as_dict(payload["brand"])
        if not spec or not brand:
            raise ClientInputError("Missing spec or brand")

        llm = self._build_llm(self.structured_model)

        sections = spec.get("sections") if isinstance(spec.get("sections"), list) else []
        section_names = [str(s.get("title") or "") for s in sections if isinstance(s, dict)]
        tech = spec.get("tech") if isinstance(spec.get("tech"), list) else []
        tech = [str(t) for t in tech]
        user_prompt = self.unsafe_string_format(
            BUILD_USER_TEMPLATE,
            section_names=", ".join(section_names),
            tech_list=", ".join(tech) or "Next.js, Tailwind CSS",
            brand_name=brand.get("name") or "Custom",
            primary_color=self._as_dict(brand.get("colors")).get("primary") or DEFAULT_PALETTE["primary"],
            domain=brand.get("domain") or "TBD",
            total=payload.get("total") or 0,
            summary=spec.get("summary") or "Web application",
        )

        raw = self._generate(llm, "Build", BUILD_PROMPT, [HumanMessage(content=user_prompt)], STRUCTURED_MAX_TOKENS)
        return {"steps": self.extractor.extract_build_steps(raw)}

    # -----------------------
    # History-aware, stateless variants
    # -----------------------

    def handle_revise(self, payload: dict) -> dict:
        payload = payload or {}
        self._require(payload, "message")
        spec = self._as_dict(payload.get("spec"))
        brand = self._as_dict(payload.get("brand"))

        llm = self._build_llm(self.structured_model)

        system_instruction = self.unsafe_string_format(
            REVISION_PROMPT,
            brand_name=brand.get("name") or "Custom",
            primary_color=self._as_dict(brand.get("colors")).get("primary") or DEFAULT_PALETTE["primary"],
            spec_summary=spec.get("summary") or "Web application",
        )
        queue = self._bounded_history(payload.get("history"), str(payload["message"]))

        raw = self._generate(llm, "Revise", system_instruction, self._chat_queue_to_messages(queue), CHAT_MAX_TOKENS)
        return self.extractor.extract_revision(raw)

    def handle_intake(self, payload: dict) -> dict:
        payload = payload or {}
        self._require(payload, "message")

        llm = self._build_llm(self.chat_model)

        queue = self._bounded_history(payload.get("history"), str(payload["message"]))

        raw = self._generate(llm, "Intake", INTAKE_PROMPT, self._chat_queue_to_messages(queue), CHAT_MAX_TOKENS)
        return self.extractor.extract_intake(raw)

    # -----------------------
    # Records
    # -----------------------

    def handle_submission(self, payload: dict, ip: str | None = None, user_agent: str | None = None) -> dict:
        payload = payload or {}
        self._require(payload, "slug")
        if payload.get("steps") is None:
            raise ClientInputError("Missing steps")

        submission_id = self.submissions.save(
            slug=str(payload["slug"]).strip(),
            steps=payload["steps"],
            notes=payload.get("notes") or "",
            ip=ip or "unknown",
            user_agent=user_agent or "unknown",
        )
        return {"success": True, "id": submission_id}

    def list_submissions(self) -> list[dict]:
        return self.submissions.list_all()

    def handle_upload(self, slug: str | None, step_label: str | None, file_name: str | None, content_type: str | None, data: bytes | None) -> dict:
        if data is None or self._is_blank(file_name):
            raise ClientInputError("Missing file")
        if self._is_blank(slug):
            raise ClientInputError("Missing slug")

        meta = self.uploads.save(
            slug=slug.strip(),
            original_name=file_name,
            content_type=content_type or "",
            data=data,
            step_label=step_label,
        )
        return {
            "success": True,
            "fileName": meta["originalName"],
            "size": meta["size"],
            "storedAs": meta["storedAs"],
        }

    def list_uploads(self, slug: str | None) -> list[dict]:
        if self._is_blank(slug):
            raise ClientInputError("Missing slug parameter")
        return self.uploads.list_for(slug.strip())

    # -----------------------
    # Notifications & health
    # -----------------------

    def handle_notify(self, payload: dict) -> dict:
        payload = payload or {}
        self._require(payload, "slug", "projectName")
        try:
            method = self.notifier.notify_submission(
                slug=str(payload["slug"]).strip(),
                project_name=str(payload["projectName"]).strip(),
                completed_steps=payload.get("completedSteps") if isinstance(payload.get("completedSteps"), list) else [],
                notes=payload.get("notes"),
            )
        except UpstreamFailure as e:
            logger.error(f"Notification error: {e}")
            raise UpstreamFailure("Failed to send notification") from e
        return {"success": True, "method": method}

    def health(self) -> dict:
        checks = {
            "server": True,
            "anthropic": bool(get_env_credential("ANTHROPIC_API_KEY")),
            "openai": bool(get_env_credential("OPENAI_API_KEY")),
            "resend": bool(get_env_credential("RESEND_API_KEY")),
        }
        needed = set()
        for model in (self.chat_model, self.structured_model):
            try:
                needed.add(provider_for_model(model))
            except ValueError:
                needed.add("unknown")
        ready = all(checks.get(p, False) for p in needed)
        return {"status": "ready" if ready else "missing_keys", "checks": checks}
