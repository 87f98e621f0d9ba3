"""YouTube Data API v3 client for the optional post-completion publish step.

Publishing acts for a single channel through a stored OAuth refresh token:

    1. POST https://oauth2.googleapis.com/token            refresh token → access token
    2. GET  <video_url>                                    published R2 artifact
    3. POST /upload/youtube/v3/videos?uploadType=resumable  upload session (Location header)
    4. PUT  <session URL> with the video bytes             → {"id": "<video id>"}

Videos are uploaded to the Music category, unlisted by default.

Usage:
    client = YouTubeClient(settings.client_id, settings.client_secret, settings.refresh_token)
    published = await client.publish(job.video_url, title="Sunday Rain", description="...")
    published.url  # https://www.youtube.com/watch?v=<id>
"""

from dataclasses import dataclass
from typing import Any, Protocol

from songreel.clients.base import ProviderClient
from songreel.exceptions import ProviderRejection
from songreel.utils.logging import get_logger

log = get_logger(__name__)

YOUTUBE_API_BASE = "https://www.googleapis.com"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
UPLOAD_PATH = "/upload/youtube/v3/videos"
WATCH_URL = "https://www.youtube.com/watch?v={video_id}"

MUSIC_CATEGORY_ID = "10"
TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 5000


@dataclass(frozen=True)
class PublishedVideo:
    video_id: str
    url: str


class VideoPublisher(Protocol):
    async def publish(self, video_url: str, title: str, description: str) -> PublishedVideo: ...

    async def close(self) -> None: ...


def clean_metadata(text: str, max_length: int) -> str:
    """Strip characters YouTube rejects in titles and descriptions."""
    return text.replace("<", "").replace(">", "").strip()[:max_length]


class YouTubeClient(ProviderClient):
    """Uploads finished videos to YouTube.

    Args:
        client_id: OAuth client ID.
        client_secret: OAuth client secret.
        refresh_token: Refresh token granted with the ``youtube.upload`` scope.
        privacy_status: ``unlisted`` (default), ``private`` or ``public``.
    """

    provider_name = "youtube"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        privacy_status: str = "unlisted",
        timeout: float = 600.0,
        **kwargs: Any,
    ):
        super().__init__(base_url=YOUTUBE_API_BASE, api_key="", timeout=timeout, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.privacy_status = privacy_status

    async def _access_token(self) -> str:
        body = await self._request_json(
            "POST",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": self.refresh_token,
                "grant_type": "refresh_token",
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise ProviderRejection(
                "youtube token refresh returned no access_token", provider=self.provider_name
            )
        return token

    async def publish(self, video_url: str, title: str, description: str) -> PublishedVideo:
        """Upload the video at ``video_url`` to YouTube.

        Raises:
            TransportError: Network failure or 429/5xx after in-call retries.
            ProviderRejection: Refresh token rejected, or the upload was refused.
        """
        access_token = await self._access_token()
        auth = {"Authorization": f"Bearer {access_token}"}

        video = (await self._request("GET", video_url)).content

        metadata = {
            "snippet": {
                "title": clean_metadata(title, TITLE_MAX_LENGTH) or "Untitled",
                "description": clean_metadata(description, DESCRIPTION_MAX_LENGTH),
                "categoryId": MUSIC_CATEGORY_ID,
            },
            "status": {"privacyStatus": self.privacy_status},
        }
        session = await self._request(
            "POST",
            UPLOAD_PATH,
            params={"uploadType": "resumable", "part": "snippet,status"},
            json=metadata,
            headers={
                **auth,
                "X-Upload-Content-Type": "video/mp4",
                "X-Upload-Content-Length": str(len(video)),
            },
        )
        upload_url = session.headers.get("location")
        if not upload_url:
            raise ProviderRejection(
                "youtube did not return an upload session URL", provider=self.provider_name
            )

        body = await self._request_json(
            "PUT",
            upload_url,
            content=video,
            headers={**auth, "Content-Type": "video/mp4"},
        )
        video_id = body.get("id") if isinstance(body, dict) else None
        if not video_id:
            raise ProviderRejection(
                "youtube upload response has no video id", provider=self.provider_name
            )

        log.info("youtube_video_uploaded", video_id=video_id, bytes=len(video))
        return PublishedVideo(video_id=video_id, url=WATCH_URL.format(video_id=video_id))
