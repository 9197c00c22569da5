"""
EduSync API — FastAPI request handlers.

Exposes the server-side functionality over HTTP:
- Achievement checks
- Notification dispatch and read state
- Certificate issue and fingerprint register/verify
- AI study assistant, essay checker and course recommendations
- Video rooms and mentor session checkout
- The /realtime WebSocket bridge to the in-process hub

Errors are returned as {"error": message} with the status carried by the
raised EduSyncError; anything else is logged and reported as a 500.
"""

from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Request, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from edusync.auth.provider import AuthProvider, TokenAuthProvider, current_user
from edusync.config import Settings, get_settings
from edusync.errors import EduSyncError
from edusync.integrations.llm import LLMGateway
from edusync.integrations.payments import MentorPayments
from edusync.integrations.video import DailyClient
from edusync.logging import setup_logging
from edusync.models.broadcast import AchievementUnlocked
from edusync.models.identity import UserIdentity
from edusync.models.integrations import CompletionMessage
from edusync.realtime.broadcast import encode_event
from edusync.realtime.sessions import ACHIEVEMENT_EVENT, achievements_topic
from edusync.realtime.transport import RealtimeHub
from edusync.realtime.websocket import RealtimeBridge
from edusync.services.achievements import AchievementService
from edusync.services.assistant import CourseRecommender, EssayChecker, StudyAssistant
from edusync.services.certificates import CertificateService
from edusync.services.notifications import NotificationService
from edusync.store.achievements import AchievementStore
from edusync.store.catalog import CatalogStore
from edusync.store.certificates import CertificateStore
from edusync.store.database import Database
from edusync.store.notifications import NotificationStore

logger = structlog.get_logger(__name__)


# --- Request Models ---

class _Body(BaseModel):
    """Request bodies use camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckAchievementsRequest(_Body):
    type: Optional[str] = None
    data: dict = {}


class SendNotificationRequest(_Body):
    user_id: Optional[str] = None
    title: Optional[str] = None
    message: Optional[str] = None
    type: Optional[str] = None
    link: Optional[str] = None


class CertificateActionRequest(_Body):
    certificate_id: Optional[str] = None
    action: Optional[str] = None


class GenerateCertificateRequest(_Body):
    course_id: Optional[str] = None


class StudyAssistantRequest(_Body):
    question: Optional[str] = None
    course_id: Optional[str] = None
    course_content: Optional[str] = None
    conversation_history: List[CompletionMessage] = []


class EssayCheckRequest(_Body):
    essay: Optional[str] = None
    check_type: Optional[str] = None


class CreateRoomRequest(_Body):
    session_id: Optional[str] = None
    session_name: Optional[str] = None


class MentorPaymentRequest(_Body):
    mentor_id: Optional[str] = None
    amount: Optional[float] = None
    scheduled_at: Optional[str] = None
    time_zone: Optional[str] = None


# --- Application Factory ---

def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    hub: Optional[RealtimeHub] = None,
    auth_provider: Optional[AuthProvider] = None,
    llm_gateway: Optional[LLMGateway] = None,
    video_client: Optional[DailyClient] = None,
    payments: Optional[MentorPayments] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = settings or get_settings()
    setup_logging(settings.log_level)

    app = FastAPI(
        title="EduSync API",
        description="Realtime sync and server handlers for the learning marketplace",
        version="0.1.0",
    )

    # Initialize components
    db = database or Database(settings.database_path)
    rt = hub or RealtimeHub()
    auth = auth_provider or TokenAuthProvider()
    db.add_change_listener(rt.publish_row_change)

    notification_store = NotificationStore(db)
    achievement_store = AchievementStore(db)
    certificate_store = CertificateStore(db)
    catalog = CatalogStore(db)

    def announce_achievement(event: AchievementUnlocked) -> None:
        rt.broadcast(achievements_topic(event.user_id), ACHIEVEMENT_EVENT, encode_event(event))

    gateway = llm_gateway or LLMGateway(
        settings.llm_gateway_url,
        settings.llm_api_key,
        model=settings.llm_model,
        timeout=settings.http_timeout,
    )
    video = video_client or DailyClient(
        settings.daily_api_key, settings.daily_api_url, timeout=settings.http_timeout
    )
    checkout = payments or MentorPayments(
        catalog, settings.stripe_secret_key, settings.stripe_api_version
    )

    achievements = AchievementService(achievement_store, catalog, announcer=announce_achievement)
    notifications = NotificationService(notification_store)
    certificates = CertificateService(certificate_store, catalog)
    assistant = StudyAssistant(gateway, catalog)
    essays = EssayChecker(gateway)
    recommender = CourseRecommender(gateway, catalog)
    bridge = RealtimeBridge(rt, auth)

    # Store components on app state for access in endpoints and tests
    app.state.settings = settings
    app.state.database = db
    app.state.hub = rt
    app.state.auth_provider = auth
    app.state.catalog = catalog
    app.state.notification_store = notification_store
    app.state.certificate_store = certificate_store
    app.state.achievements = achievements
    app.state.notifications = notifications
    app.state.certificates = certificates

    # === ERRORS ===

    @app.exception_handler(EduSyncError)
    async def handle_edusync_error(request: Request, exc: EduSyncError):
        if exc.status_code >= 500:
            logger.error("request_failed", path=request.url.path, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"error": message})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("request_crashed", path=request.url.path)
        return JSONResponse(status_code=500, content={"error": "Unknown error"})

    # === ACHIEVEMENTS ===

    @app.post("/functions/check-achievements")
    def check_achievements(
        req: CheckAchievementsRequest, user: UserIdentity = Depends(current_user)
    ):
        awarded = achievements.check(user.id, req.type or "", req.data)
        return {"achievements": [a.model_dump() for a in awarded]}

    # === NOTIFICATIONS ===

    @app.post("/functions/send-notification")
    def send_notification(req: SendNotificationRequest):
        record = notifications.dispatch(req.user_id, req.title, req.message, req.type, req.link)
        return {"success": True, "notification": record.model_dump(mode="json")}

    @app.get("/notifications")
    def list_notifications(limit: int = 50, user: UserIdentity = Depends(current_user)):
        records = notifications.list_for_user(user.id, limit=limit)
        return {
            "notifications": [r.model_dump(mode="json") for r in records],
            "unread": notifications.unread_count(user.id),
        }

    @app.post("/notifications/read-all")
    def mark_all_notifications_read(user: UserIdentity = Depends(current_user)):
        return {"updated": notifications.mark_all_read(user.id)}

    @app.post("/notifications/{notification_id}/read")
    def mark_notification_read(notification_id: str, user: UserIdentity = Depends(current_user)):
        record = notifications.mark_read(notification_id, user.id)
        return {"notification": record.model_dump(mode="json")}

    # === CERTIFICATES ===

    @app.post("/functions/verify-certificate-blockchain")
    def certificate_fingerprint(req: CertificateActionRequest):
        return certificates.handle(req.certificate_id, req.action)

    @app.post("/functions/generate-certificate")
    def generate_certificate(
        req: GenerateCertificateRequest, user: UserIdentity = Depends(current_user)
    ):
        certificate = certificates.issue(user.id, req.course_id)
        return {"certificate": certificate.model_dump(mode="json")}

    # === AI ASSISTANT ===

    @app.post("/functions/study-assistant")
    def study_assistant(req: StudyAssistantRequest):
        answer = assistant.answer(
            req.question, req.course_id, req.course_content, req.conversation_history
        )
        return {"answer": answer}

    @app.post("/functions/essay-checker")
    def essay_checker(req: EssayCheckRequest):
        return {"feedback": essays.check(req.essay, req.check_type)}

    @app.post("/functions/generate-recommendations")
    def generate_recommendations(user: UserIdentity = Depends(current_user)):
        return {"recommendations": recommender.recommend(user.id)}

    # === VIDEO AND PAYMENTS ===

    @app.post("/functions/create-daily-room")
    def create_daily_room(req: CreateRoomRequest):
        room = video.create_room(req.session_id)
        return {"roomUrl": room.url, "roomName": room.name}

    @app.post("/functions/create-mentor-payment")
    def create_mentor_payment(
        req: MentorPaymentRequest,
        request: Request,
        user: UserIdentity = Depends(current_user),
    ):
        origin = request.headers.get("origin") or str(request.base_url).rstrip("/")
        session = checkout.create_checkout(
            user, req.mentor_id, req.amount, req.scheduled_at, req.time_zone, origin
        )
        return {"url": session.url}

    # === REALTIME ===

    @app.websocket("/realtime")
    async def realtime(websocket: WebSocket):
        await bridge.serve(websocket)

    # === HEALTH ===

    @app.get("/health")
    def health():
        return {"status": "ok", "service": settings.app_name}

    return app


# Default app instance
app = create_app()
