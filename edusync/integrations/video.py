"""
Video Rooms — Daily.co room provisioning and the embedded-call control protocol.

Behavioral Contract:
- create_room() issues one POST to {daily_api_url}/rooms and returns the
  room URL and name. Rooms are private and expire three hours after creation.
- control_message() builds the message posted to the embedded call frame.
  Delivery is fire-and-forget: no acknowledgement is read back, so the
  caller cannot tell whether the frame applied it.
"""

import time
from typing import Optional

import httpx
import structlog

from edusync.errors import ConfigurationError, UpstreamError, ValidationError
from edusync.models.integrations import VideoControlAction, VideoRoom

logger = structlog.get_logger(__name__)

DEFAULT_API_URL = "https://api.daily.co/v1"
ROOM_LIFETIME_SECONDS = 3 * 60 * 60
MAX_PARTICIPANTS = 10


def room_name(session_id: str) -> str:
    return f"session-{session_id}"


def control_message(action: VideoControlAction) -> dict:
    """Frame message for a call control; the frame never replies."""
    return {"action": VideoControlAction(action).value}


class DailyClient:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_API_URL,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        client_kwargs = {"transport": transport}
        if timeout is not None:
            client_kwargs["timeout"] = timeout
        self._client = httpx.Client(**client_kwargs)

    def create_room(self, session_id: Optional[str], now: Optional[float] = None) -> VideoRoom:
        if not self.api_key:
            raise ConfigurationError("DAILY_API_KEY not configured")
        if not session_id:
            raise ValidationError("sessionId is required")

        now = time.time() if now is None else now
        body = {
            "name": room_name(session_id),
            "privacy": "private",
            "properties": {
                "enable_screenshare": True,
                "enable_chat": True,
                "enable_recording": "cloud",
                "start_video_off": False,
                "start_audio_off": False,
                "max_participants": MAX_PARTICIPANTS,
                "exp": int(now) + ROOM_LIFETIME_SECONDS,
            },
        }
        response = self._client.post(
            f"{self.base_url}/rooms",
            json=body,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        if response.is_error:
            logger.error("daily_room_failed", status=response.status_code, session_id=session_id)
            raise UpstreamError(
                f"Daily API error: {response.text}", upstream_status=response.status_code
            )

        room = response.json()
        logger.info("daily_room_created", session_id=session_id, room=room.get("name"))
        return VideoRoom(url=room["url"], name=room["name"])

    def close(self) -> None:
        self._client.close()
