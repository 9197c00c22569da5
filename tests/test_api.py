"""Tests for the FastAPI API endpoints."""

from types import SimpleNamespace

import httpx
import pytest
import stripe
from fastapi.testclient import TestClient

from edusync.api.app import create_app
from edusync.auth.provider import TokenAuthProvider
from edusync.config import Settings
from edusync.integrations.llm import LLMGateway
from edusync.integrations.video import DailyClient
from edusync.models.certificate import Certificate
from edusync.models.identity import UserIdentity
from edusync.realtime.channel import RealtimeClient
from edusync.realtime.sessions import AchievementFeed, NotificationFeed
from edusync.realtime.transport import RealtimeHub
from edusync.store.database import Database

AUTH = {"Authorization": "Bearer tok-u1"}


@pytest.fixture
def env():
    """App wired to in-memory components and mocked HTTP upstreams."""
    db = Database(db_path=":memory:")
    hub = RealtimeHub()
    auth = TokenAuthProvider()
    auth.issue_token(UserIdentity(id="u1", email="ada@example.com", full_name="Ada"), token="tok-u1")

    llm = {"status": 200, "body": {"choices": [{"message": {"content": "ok"}}]}}
    gateway = LLMGateway(
        "https://gateway.test/v1", "llm-key",
        transport=httpx.MockTransport(lambda r: httpx.Response(llm["status"], json=llm["body"])),
    )
    video = DailyClient(
        "daily-key", "https://daily.test/v1",
        transport=httpx.MockTransport(lambda r: httpx.Response(
            200, json={"url": "https://edu.daily.co/session-7", "name": "session-7"}
        )),
    )

    app = create_app(
        settings=Settings(_env_file=None, stripe_secret_key="sk_test"),
        database=db,
        hub=hub,
        auth_provider=auth,
        llm_gateway=gateway,
        video_client=video,
    )
    yield SimpleNamespace(
        app=app,
        client=TestClient(app),
        db=db,
        hub=hub,
        llm=llm,
        catalog=app.state.catalog,
    )
    db.close()


class TestHealthAndErrors:
    def test_health(self, env):
        response = env.client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_missing_token(self, env):
        response = env.client.post("/functions/check-achievements", json={"type": "streak_check"})
        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_unknown_token(self, env):
        response = env.client.get("/notifications", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_malformed_body_is_400(self, env):
        response = env.client.post(
            "/functions/create-mentor-payment", headers=AUTH,
            json={"mentorId": "m1", "amount": "lots", "scheduledAt": "2025-01-01T10:00:00"},
        )
        assert response.status_code == 400
        assert "error" in response.json()

    def test_unexpected_error_is_500(self, env, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("database on fire")

        monkeypatch.setattr(env.app.state.notifications, "list_for_user", boom)
        client = TestClient(env.app, raise_server_exceptions=False)

        response = client.get("/notifications", headers=AUTH)

        assert response.status_code == 500
        assert response.json() == {"error": "Unknown error"}


class TestAchievementEndpoints:
    def test_perfect_score_then_nothing(self, env):
        body = {"type": "quiz_completed", "data": {"percentage": 100}}

        first = env.client.post("/functions/check-achievements", json=body, headers=AUTH)
        second = env.client.post("/functions/check-achievements", json=body, headers=AUTH)

        assert first.status_code == 200
        assert [a["id"] for a in first.json()["achievements"]] == ["first-perfect-score"]
        assert second.json() == {"achievements": []}

    def test_unlock_is_broadcast_to_the_user(self, env):
        feed = AchievementFeed(RealtimeClient(env.hub), "u1").open()

        env.client.post(
            "/functions/check-achievements", headers=AUTH,
            json={"type": "quiz_completed", "data": {"percentage": 100}},
        )

        assert [e.achievement_id for e in feed.unlocked] == ["first-perfect-score"]

    def test_missing_percentage(self, env):
        response = env.client.post(
            "/functions/check-achievements", json={"type": "quiz_completed"}, headers=AUTH
        )
        assert response.status_code == 400

    def test_unknown_activity(self, env):
        response = env.client.post(
            "/functions/check-achievements", json={"type": "nap_taken"}, headers=AUTH
        )
        assert response.status_code == 400


class TestNotificationEndpoints:
    def _send(self, env, **overrides):
        body = {"userId": "u1", "title": "Hi", "message": "Welcome", "type": "general"}
        body.update(overrides)
        return env.client.post("/functions/send-notification", json=body)

    def test_send_and_list(self, env):
        sent = self._send(env, link="/courses")
        assert sent.status_code == 200
        assert sent.json()["success"] is True

        listed = env.client.get("/notifications", headers=AUTH).json()
        assert [n["title"] for n in listed["notifications"]] == ["Hi"]
        assert listed["unread"] == 1

    def test_missing_fields(self, env):
        response = self._send(env, title=None)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields"}

    def test_live_feed_receives_insert(self, env):
        store = env.app.state.notification_store
        feed = NotificationFeed(RealtimeClient(env.hub), store, "u1").open()

        self._send(env, title="Live")

        assert [n.title for n in feed.items] == ["Live"]
        assert feed.unread == 1

    def test_mark_read_and_read_all(self, env):
        first = self._send(env).json()["notification"]
        self._send(env, title="Second")

        read = env.client.post(f"/notifications/{first['id']}/read", headers=AUTH)
        assert read.status_code == 200
        assert read.json()["notification"]["read"] is True

        everything = env.client.post("/notifications/read-all", headers=AUTH)
        assert everything.json() == {"updated": 1}

    def test_mark_read_unknown(self, env):
        response = env.client.post("/notifications/missing/read", headers=AUTH)
        assert response.status_code == 404


class TestCertificateEndpoints:
    def _issue_certificate(self, env):
        env.catalog.upsert_profile("u1", full_name="Ada")
        env.catalog.add_course("Statistics", course_id="c1")
        env.app.state.certificate_store.insert(Certificate(
            id="cert-1", user_id="u1", course_id="c1",
            issued_at="2024-01-01T00:00:00", verification_code="CERT-1-AAAAAAAAA",
        ))

    def test_verify_register_verify(self, env):
        self._issue_certificate(env)
        url = "/functions/verify-certificate-blockchain"

        before = env.client.post(url, json={"certificateId": "cert-1", "action": "verify"})
        registered = env.client.post(url, json={"certificateId": "cert-1", "action": "register"})
        after = env.client.post(url, json={"certificateId": "cert-1", "action": "verify"})

        assert before.json()["verified"] is False
        assert registered.json()["success"] is True
        assert after.json()["verified"] is True
        assert after.json()["hash"] == registered.json()["hash"]
        assert after.json()["certificate"]["courseName"] == "Statistics"

    def test_unknown_certificate(self, env):
        response = env.client.post(
            "/functions/verify-certificate-blockchain",
            json={"certificateId": "nope", "action": "verify"},
        )
        assert response.status_code == 404

    def test_invalid_action(self, env):
        self._issue_certificate(env)
        response = env.client.post(
            "/functions/verify-certificate-blockchain",
            json={"certificateId": "cert-1", "action": "burn"},
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid action"}

    def test_generate_requires_completion(self, env):
        env.catalog.add_course("Statistics", course_id="c1")
        env.catalog.enroll("u1", "c1")
        response = env.client.post(
            "/functions/generate-certificate", json={"courseId": "c1"}, headers=AUTH
        )
        assert response.status_code == 404

    def test_generate_returns_existing(self, env):
        env.catalog.add_course("Statistics", course_id="c1")
        env.catalog.complete_enrollment(env.catalog.enroll("u1", "c1"))

        first = env.client.post(
            "/functions/generate-certificate", json={"courseId": "c1"}, headers=AUTH
        ).json()["certificate"]
        second = env.client.post(
            "/functions/generate-certificate", json={"courseId": "c1"}, headers=AUTH
        ).json()["certificate"]

        assert first["id"] == second["id"]
        assert first["verification_code"].startswith("CERT-")


class TestAssistantEndpoints:
    def test_study_assistant(self, env):
        env.llm["body"] = {"choices": [{"message": {"content": "Variance measures spread."}}]}
        response = env.client.post(
            "/functions/study-assistant", json={"question": "What is variance?"}
        )
        assert response.json() == {"answer": "Variance measures spread."}

    def test_study_assistant_passes_history(self, env):
        env.llm["body"] = {"choices": [{"message": {"content": "Yes."}}]}
        response = env.client.post("/functions/study-assistant", json={
            "question": "And the mean?",
            "conversationHistory": [
                {"role": "user", "content": "What is variance?"},
                {"role": "assistant", "content": "A measure of spread."},
            ],
        })
        assert response.json() == {"answer": "Yes."}

    def test_malformed_history_is_400(self, env):
        response = env.client.post("/functions/study-assistant", json={
            "question": "?", "conversationHistory": [{"text": "hi"}],
        })
        assert response.status_code == 400

    def test_rate_limit_is_surfaced(self, env):
        env.llm["status"] = 429
        response = env.client.post("/functions/study-assistant", json={"question": "?"})
        assert response.status_code == 429
        assert response.json() == {"error": "Rate limit exceeded. Please try again later."}

    def test_payment_required_is_surfaced(self, env):
        env.llm["status"] = 402
        response = env.client.post("/functions/essay-checker", json={"essay": "Words."})
        assert response.status_code == 402

    def test_essay_checker(self, env):
        env.llm["body"] = {"choices": [{"message": {"content": "Strong thesis."}}]}
        response = env.client.post(
            "/functions/essay-checker", json={"essay": "Words.", "checkType": "structure"}
        )
        assert response.json() == {"feedback": "Strong thesis."}

    def test_recommendations(self, env):
        env.catalog.add_course("Python", course_id="py")
        env.catalog.add_course("Rust", course_id="rs")
        env.llm["body"] = {"choices": [{"message": {
            "content": None,
            "tool_calls": [{"function": {
                "name": "recommend_courses", "arguments": '{"course_ids": ["rs"]}',
            }}],
        }}]}

        response = env.client.post("/functions/generate-recommendations", headers=AUTH)

        assert [c["id"] for c in response.json()["recommendations"]] == ["rs"]


class TestVideoAndPayments:
    def test_create_daily_room(self, env):
        response = env.client.post("/functions/create-daily-room", json={"sessionId": "7"})
        assert response.json() == {
            "roomUrl": "https://edu.daily.co/session-7", "roomName": "session-7",
        }

    def test_create_mentor_payment(self, env, monkeypatch):
        monkeypatch.setattr(
            stripe.Customer, "list", lambda **kw: SimpleNamespace(data=[SimpleNamespace(id="cus_1")])
        )
        monkeypatch.setattr(
            stripe.checkout.Session, "create",
            lambda **kw: SimpleNamespace(id="cs_1", url=kw["success_url"]),
        )

        response = env.client.post(
            "/functions/create-mentor-payment",
            headers={**AUTH, "Origin": "https://app.test"},
            json={"mentorId": "m1", "amount": 30, "scheduledAt": "2025-01-01T10:00:00",
                  "timeZone": "UTC"},
        )

        assert response.status_code == 200
        assert response.json() == {"url": "https://app.test/mentor-sessions?success=true"}
        assert env.catalog.list_bookings("u1")[0]["mentor_id"] == "m1"

    def test_payment_requires_auth(self, env):
        response = env.client.post("/functions/create-mentor-payment", json={"mentorId": "m1"})
        assert response.status_code == 401
