import json
import os
import re

import httpx
from langchain_core.messages import AIMessage, HumanMessage

from tests.base import BackendTestCase
from viberr.errors import UpstreamRejected, UpstreamUnavailable
from viberr.notifier import Notifier

HEX = re.compile(r"^#[0-9a-f]{6}$")

BRAND = {
    "name": "Bloom",
    "colors": {"primary": "#112233"},
    "font": {"heading": "Sora", "body": "Inter"},
    "domains": ["bloom.shop"],
}
SPEC = {"summary": "Flower shop", "sections": [{"title": "Catalog", "items": ["Grid"]}], "tech": ["Next.js"]}

# one valid request per AI-backed route
AI_ROUTES = [
    ("/api/ai", {"slug": "shop", "message": "hello"}),
    ("/api/brand", {"description": "A flower shop"}),
    ("/api/decompose", {"features": ["Online booking"]}),
    ("/api/spec", {"description": "A flower shop", "features": [{"feature": "Booking", "tasks": []}], "brand": BRAND, "total": 500}),
    ("/api/build", {"spec": SPEC, "brand": BRAND, "total": 500}),
    ("/api/revise", {"message": "Make it blue", "history": []}),
    ("/api/intake", {"message": "I run a bakery"}),
]


def _brand_option(name: str) -> dict:
    return {
        "name": name,
        "vibe": "Fresh",
        "colors": {"primary": "#AABBCC", "secondary": "#123456", "accent": "#fedcba", "background": "#ffffff", "text": "#000000"},
        "font": {"heading": "Sora", "body": "Inter"},
        "domains": [f"{name.lower()}.com"],
    }


class BrandRouteTests(BackendTestCase):
    def test_fenced_json_yields_three_valid_options(self) -> None:
        payload = {"options": [_brand_option(n) for n in ("Bloom", "Petal", "Stem")]}
        self.respond_with("```json\n" + json.dumps(payload) + "\n```")

        resp = self.client.post("/api/brand", json={"description": "A flower shop", "features": ["Delivery"]})

        self.assertEqual(200, resp.status_code)
        options = resp.json()["options"]
        self.assertEqual(3, len(options))
        for option in options:
            for color in option["colors"].values():
                self.assertRegex(color, HEX)
        self.assertEqual(1, len(self.llm.calls))
        self.assertIn("Delivery", self.llm.calls[0]["messages"][0].content)

    def test_prose_response_is_empty_options_not_error(self) -> None:
        self.respond_with("Sure! Here are some brand ideas: Bloom, Petal and Stem.")
        resp = self.client.post("/api/brand", json={"description": "A flower shop"})
        self.assertEqual(200, resp.status_code)
        self.assertEqual({"options": []}, resp.json())

    def test_missing_description(self) -> None:
        resp = self.client.post("/api/brand", json={"features": ["x"]})
        self.assertEqual(400, resp.status_code)
        self.assertIn("description", resp.json()["error"])
        self.assertEqual([], self.llm.calls)


class DecomposeRouteTests(BackendTestCase):
    def test_empty_features_rejected_without_upstream_call(self) -> None:
        for body in ({"features": []}, {}, {"features": "Booking"}):
            with self.subTest(body=body):
                resp = self.client.post("/api/decompose", json=body)
                self.assertEqual(400, resp.status_code)
                self.assertIn("error", resp.json())
        self.assertEqual([], self.llm.calls)
        self.assertEqual([], self.llm.built)

    def test_items_returned(self) -> None:
        self.respond_with(json.dumps({"items": [{"feature": "Booking", "tasks": [{"name": "Calendar", "description": "Grid", "price": 200}]}]}))
        resp = self.client.post("/api/decompose", json={"features": ["Booking"]})
        self.assertEqual(200, resp.status_code)
        self.assertEqual(200, resp.json()["items"][0]["tasks"][0]["price"])
        self.assertIn("1. Booking", self.llm.calls[0]["messages"][0].content)


class MissingCredentialTests(BackendTestCase):
    def test_every_ai_route_refuses_without_key(self) -> None:
        os.environ.pop("ANTHROPIC_API_KEY", None)
        for path, body in AI_ROUTES:
            with self.subTest(path=path):
                resp = self.client.post(path, json=body)
                self.assertEqual(500, resp.status_code)
                self.assertIn("not configured", resp.json()["error"])
        self.assertEqual([], self.llm.calls)
        self.assertEqual([], self.llm.built)
        self.assertEqual([], self.assistant_store.load("shop"))

    def test_blank_key_counts_as_missing(self) -> None:
        os.environ["ANTHROPIC_API_KEY"] = "   "
        resp = self.client.post("/api/intake", json={"message": "hi"})
        self.assertEqual(500, resp.status_code)
        self.assertEqual([], self.llm.calls)

    def test_key_is_read_per_request(self) -> None:
        os.environ.pop("ANTHROPIC_API_KEY", None)
        self.assertEqual(500, self.client.post("/api/intake", json={"message": "hi"}).status_code)
        os.environ["ANTHROPIC_API_KEY"] = "rotated-key"
        self.respond_with('{"message": "Tell me more", "points": null}')
        resp = self.client.post("/api/intake", json={"message": "hi"})
        self.assertEqual(200, resp.status_code)
        self.assertEqual("rotated-key", self.llm.built[-1]["api_key"])


class UpstreamFailureTests(BackendTestCase):
    def test_rejected_upstream_is_502_and_nothing_persisted(self) -> None:
        self.respond_with(UpstreamRejected(529, '{"type": "overloaded_error"}'))
        resp = self.client.post("/api/ai", json={"slug": "shop", "message": "hello"})
        self.assertEqual(502, resp.status_code)
        self.assertEqual({"error": "AI request failed"}, resp.json())
        self.assertEqual([], self.assistant_store.load("shop"))

    def test_unreachable_upstream_is_502(self) -> None:
        self.respond_with(UpstreamUnavailable("connect timeout"))
        resp = self.client.post("/api/brand", json={"description": "A flower shop"})
        self.assertEqual(502, resp.status_code)
        self.assertEqual("AI request failed", resp.json()["error"])

    def test_same_request_twice_calls_upstream_twice(self) -> None:
        self.respond_with('{"options": []}', '{"options": []}')
        for _ in range(2):
            self.client.post("/api/brand", json={"description": "A flower shop"})
        self.assertEqual(2, len(self.llm.calls))


class AssistantChatTests(BackendTestCase):
    def test_turns_are_persisted_and_replayed(self) -> None:
        self.respond_with("Hi! How can I help?", "Your hours are 9 to 5.")

        first = self.client.post("/api/ai", json={"slug": "shop", "message": "hello", "projectName": "Bloom"})
        self.assertEqual(200, first.status_code)
        self.assertEqual({"response": "Hi! How can I help?", "messageCount": 2}, first.json())

        second = self.client.post("/api/ai", json={"slug": "shop", "message": "What are my hours?"})
        self.assertEqual(4, second.json()["messageCount"])

        replayed = self.llm.calls[1]["messages"]
        self.assertEqual(
            [HumanMessage, AIMessage, HumanMessage],
            [type(m) for m in replayed],
        )
        self.assertEqual("What are my hours?", replayed[-1].content)
        self.assertIn("Bloom", self.llm.calls[0]["system"])

        log = self.assistant_store.load("shop")
        self.assertEqual(["user", "assistant", "user", "assistant"], [m["role"] for m in log])
        self.assertTrue(all(m["timestamp"] for m in log))

    def test_empty_reply_uses_fallback_text(self) -> None:
        self.respond_with("   ")
        resp = self.client.post("/api/ai", json={"slug": "shop", "message": "hello"})
        self.assertEqual("I couldn't generate a response.", resp.json()["response"])

    def test_missing_fields(self) -> None:
        resp = self.client.post("/api/ai", json={"slug": "shop"})
        self.assertEqual(400, resp.status_code)
        self.assertEqual({"error": "Missing message"}, resp.json())


class PlainChatTests(BackendTestCase):
    def test_post_then_get(self) -> None:
        self.assertEqual({"success": True, "count": 1}, self.client.post("/api/chat", json={"slug": "shop", "message": "hi"}).json())
        self.assertEqual(2, self.client.post("/api/chat", json={"slug": "shop", "message": "again"}).json()["count"])

        messages = self.client.get("/api/chat", params={"slug": "shop"}).json()
        self.assertEqual(["hi", "again"], [m["text"] for m in messages])
        self.assertEqual({"user"}, {m["from"] for m in messages})
        self.assertEqual([], self.llm.calls)

    def test_unknown_slug_is_empty_list(self) -> None:
        resp = self.client.get("/api/chat", params={"slug": "nobody"})
        self.assertEqual(200, resp.status_code)
        self.assertEqual([], resp.json())

    def test_missing_slug(self) -> None:
        self.assertEqual(400, self.client.get("/api/chat").status_code)


class ConversationRouteTests(BackendTestCase):
    def test_revise_history_truncated_to_twenty(self) -> None:
        history = [
            {"role": "user" if i % 2 == 0 else "assistant", "content": f"turn {i}"}
            for i in range(25)
        ]
        self.respond_with('{"message": "Done", "applying": true, "changes": ["Blue header"]}')

        resp = self.client.post(
            "/api/revise",
            json={"message": "Make the header blue", "history": history, "spec": SPEC, "brand": BRAND},
        )

        self.assertEqual({"message": "Done", "applying": True, "changes": ["Blue header"]}, resp.json())
        sent = self.llm.calls[0]["messages"]
        self.assertEqual(20, len(sent))
        self.assertEqual("Make the header blue", sent[-1].content)
        self.assertEqual("turn 6", sent[0].content)
        self.assertIn("#112233", self.llm.calls[0]["system"])

    def test_malformed_history_entries_dropped(self) -> None:
        history = [{"role": "user"}, "junk", {"role": "system", "content": "x"}, {"role": "assistant", "content": "ok"}]
        self.respond_with("Sure thing.")
        resp = self.client.post("/api/revise", json={"message": "hi", "history": history})
        self.assertEqual({"message": "Sure thing.", "applying": False, "changes": None}, resp.json())
        self.assertEqual(["ok", "hi"], [m.content for m in self.llm.calls[0]["messages"]])

    def test_intake_points(self) -> None:
        self.respond_with('```json\n{"message": "Here is the plan", "points": ["Booking", "Payments"]}\n```')
        resp = self.client.post("/api/intake", json={"message": "I run a salon"})
        self.assertEqual({"message": "Here is the plan", "points": ["Booking", "Payments"]}, resp.json())


class SpecAndBuildRouteTests(BackendTestCase):
    def test_spec_prompt_carries_brand_and_features(self) -> None:
        self.respond_with(json.dumps({"spec": {"summary": "Shop", "sections": [], "tech": ["Next.js"], "timeline": "3 days", "notes": ""}}))
        body = dict(AI_ROUTES[3][1])
        resp = self.client.post("/api/spec", json=body)
        self.assertEqual("Shop", resp.json()["spec"]["summary"])
        prompt = self.llm.calls[0]["messages"][0].content
        self.assertIn("Bloom", prompt)
        self.assertIn("bloom.shop", prompt)
        self.assertIn("500", prompt)

    def test_spec_requires_brand(self) -> None:
        resp = self.client.post("/api/spec", json={"description": "x", "features": ["a"]})
        self.assertEqual(400, resp.status_code)
        self.assertEqual([], self.llm.calls)

    def test_build_steps(self) -> None:
        self.respond_with('{"steps": [{"id": "a", "label": "Scaffold", "detail": "npx", "duration": 1500}]}')
        resp = self.client.post("/api/build", json={"spec": SPEC, "brand": BRAND})
        self.assertEqual([{"id": "a", "label": "Scaffold", "detail": "npx", "duration": 1500}], resp.json()["steps"])
        self.assertIn("Catalog", self.llm.calls[0]["messages"][0].content)


class RecordsRouteTests(BackendTestCase):
    def test_submission_round_trip(self) -> None:
        resp = self.client.post(
            "/api/submissions",
            json={"slug": "shop", "steps": [{"label": "Logo", "value": "done"}], "notes": "asap"},
            headers={"x-forwarded-for": "1.2.3.4, 10.0.0.1", "user-agent": "tests"},
        )
        self.assertEqual(200, resp.status_code)
        submission_id = resp.json()["id"]
        self.assertTrue(submission_id.startswith("shop-"))

        listed = self.client.get("/api/submissions").json()
        self.assertEqual(1, len(listed))
        self.assertEqual(submission_id, listed[0]["id"])
        self.assertEqual("1.2.3.4", listed[0]["ip"])
        self.assertEqual("tests", listed[0]["userAgent"])
        self.assertEqual("asap", listed[0]["notes"])

    def test_submission_requires_steps(self) -> None:
        resp = self.client.post("/api/submissions", json={"slug": "shop"})
        self.assertEqual(400, resp.status_code)

    def test_upload_round_trip(self) -> None:
        resp = self.client.post(
            "/api/upload",
            files={"file": ("my logo.png", b"\x89PNG", "image/png")},
            data={"slug": "shop", "stepLabel": "Logo"},
        )
        self.assertEqual(200, resp.status_code)
        body = resp.json()
        self.assertEqual({"success": True, "fileName": "my logo.png", "size": 4}, {k: body[k] for k in ("success", "fileName", "size")})
        self.assertTrue(body["storedAs"].endswith("-my_logo.png"))

        listed = self.client.get("/api/upload", params={"slug": "shop"}).json()
        self.assertEqual(1, len(listed))
        self.assertEqual("Logo", listed[0]["stepLabel"])
        self.assertEqual("image/png", listed[0]["type"])

    def test_upload_without_file(self) -> None:
        resp = self.client.post("/api/upload", data={"slug": "shop"})
        self.assertEqual(400, resp.status_code)
        self.assertEqual({"error": "Missing file"}, resp.json())


class NotifyAndHealthTests(BackendTestCase):
    def test_notify_logs_without_email_config(self) -> None:
        resp = self.client.post("/api/notify", json={"slug": "shop", "projectName": "Bloom", "completedSteps": []})
        self.assertEqual({"success": True, "method": "log"}, resp.json())

    def test_notify_failure_is_502(self) -> None:
        os.environ["RESEND_API_KEY"] = "re_test"
        os.environ["NOTIFY_EMAIL"] = "ops@example.com"
        self.backend.notifier = Notifier(
            http_client=httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(500, text="down")))
        )
        resp = self.client.post("/api/notify", json={"slug": "shop", "projectName": "Bloom"})
        self.assertEqual(502, resp.status_code)
        self.assertEqual({"error": "Failed to send notification"}, resp.json())

    def test_notify_requires_project_name(self) -> None:
        self.assertEqual(400, self.client.post("/api/notify", json={"slug": "shop"}).status_code)

    def test_health_ready_then_missing(self) -> None:
        resp = self.client.get("/api/health").json()
        self.assertEqual("ready", resp["status"])
        self.assertTrue(resp["checks"]["server"])
        self.assertTrue(resp["checks"]["anthropic"])

        os.environ.pop("ANTHROPIC_API_KEY", None)
        resp = self.client.get("/api/health").json()
        self.assertEqual("missing_keys", resp["status"])
        self.assertFalse(resp["checks"]["anthropic"])


class RequestValidationTests(BackendTestCase):
    def test_wrong_field_type_is_400_with_error_body(self) -> None:
        resp = self.client.post("/api/ai", json={"slug": 123, "message": "hi"})
        self.assertEqual(400, resp.status_code)
        self.assertEqual({"error": "Missing or invalid slug"}, resp.json())
        self.assertEqual([], self.llm.calls)

    def test_malformed_json_body_is_400(self) -> None:
        resp = self.client.post("/api/brand", content=b"{not json", headers={"content-type": "application/json"})
        self.assertEqual(400, resp.status_code)
        self.assertEqual({"error": "Invalid request body"}, resp.json())

    def test_non_object_body_is_400(self) -> None:
        resp = self.client.post("/api/chat", json=["slug", "message"])
        self.assertEqual(400, resp.status_code)
        self.assertIn("error", resp.json())
        self.assertNotIn("detail", resp.json())


class HostileModelOutputTests(BackendTestCase):
    def test_deeply_nested_reply_degrades_to_defaults(self) -> None:
        self.respond_with("[" * 100000)
        resp = self.client.post("/api/brand", json={"description": "A flower shop"})
        self.assertEqual(200, resp.status_code)
        self.assertEqual({"options": []}, resp.json())

    def test_deeply_nested_revision_reply_is_200(self) -> None:
        self.respond_with('{"message": ' * 50000)
        resp = self.client.post("/api/revise", json={"message": "hi"})
        self.assertEqual(200, resp.status_code)
        self.assertFalse(resp.json()["applying"])


class LooseInputShapeTests(BackendTestCase):
    def test_spec_with_scalar_tasks(self) -> None:
        self.respond_with('{"spec": {"summary": "Shop"}}')
        body = {"description": "A flower shop", "features": [{"feature": "Booking", "tasks": 5}], "brand": BRAND}
        resp = self.client.post("/api/spec", json=body)
        self.assertEqual(200, resp.status_code)
        self.assertIn("Booking:", self.llm.calls[0]["messages"][0].content)

    def test_build_with_scalar_sections_and_string_tech(self) -> None:
        self.respond_with('{"steps": []}')
        spec = {"summary": "Shop", "sections": 5, "tech": "Next.js"}
        resp = self.client.post("/api/build", json={"spec": spec, "brand": BRAND})
        self.assertEqual(200, resp.status_code)
        self.assertEqual({"steps": []}, resp.json())
        self.assertIn("Tech: Next.js, Tailwind CSS", self.llm.calls[0]["messages"][0].content)
