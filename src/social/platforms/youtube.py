"""YouTube Data API publisher for Shorts (resumable upload)."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import httpx

from src.social.platforms.base import (
    HttpPlatformClient,
    PlatformPostRequest,
    PlatformPostResult,
    PlatformPublishError,
    PostingAccount,
    caption_with_hashtags,
)


YOUTUBE_TITLE_LIMIT = 100
YOUTUBE_DESCRIPTION_LIMIT = 5000
YOUTUBE_ENTERTAINMENT_CATEGORY = "24"


def _description(caption: str, hashtags: List[str]) -> str:
    description = caption_with_hashtags(caption, hashtags, limit=YOUTUBE_DESCRIPTION_LIMIT)
    if "#Shorts" not in description:
        description = f"{description} #Shorts".strip()
    return description[:YOUTUBE_DESCRIPTION_LIMIT]


class YouTubePublisher(HttpPlatformClient):
    platform = "youtube"

    def __init__(self, *, upload_base_url: str = "https://www.googleapis.com/upload/youtube/v3", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._upload_base_url = upload_base_url.rstrip("/")

    def _download(self, video_url: str) -> bytes:
        response = self._send("GET", video_url, follow_redirects=True)
        self._check(response)
        if not response.content:
            raise PlatformPublishError("youtube_source_video_empty")
        return response.content

    def _start_session(self, account: PostingAccount, request: PlatformPostRequest, size: int) -> str:
        options = request.options or {}
        hashtags = list(request.hashtags)
        metadata: Dict[str, Any] = {
            "snippet": {
                "title": str(options.get("title") or request.caption)[:YOUTUBE_TITLE_LIMIT],
                "description": _description(request.caption, hashtags),
                "categoryId": str(options.get("category_id") or YOUTUBE_ENTERTAINMENT_CATEGORY),
                "tags": [tag.lstrip("#") for tag in hashtags if tag.strip()],
            },
            "status": {
                "privacyStatus": options.get("privacy_status", "public"),
                "selfDeclaredMadeForKids": bool(options.get("made_for_kids", False)),
            },
        }
        response = self._send(
            "POST",
            f"{self._upload_base_url}/videos?uploadType=resumable&part=snippet,status",
            headers={
                "Authorization": f"Bearer {account.access_token}",
                "Content-Type": "application/json; charset=UTF-8",
                "X-Upload-Content-Type": "video/mp4",
                "X-Upload-Content-Length": str(size),
            },
            json=metadata,
        )
        self._check(response)
        location = response.headers.get("location")
        if not location:
            raise PlatformPublishError("youtube_upload_session_missing_location")
        return location

    def upload_video(self, account: PostingAccount, request: PlatformPostRequest) -> PlatformPostResult:
        if not request.video_url.strip():
            return self._failure("youtube_video_url_missing")
        try:
            content = self._download(request.video_url)
            session_url = self._start_session(account, request, len(content))
            body = self._request(
                "PUT",
                session_url,
                headers={"Authorization": f"Bearer {account.access_token}", "Content-Type": "video/mp4"},
                content=content,
            )
        except (PlatformPublishError, httpx.HTTPError) as exc:
            return self._failure(str(exc) or exc.__class__.__name__, video_url=request.video_url)

        video_id: Optional[str] = str(body.get("id") or "").strip() or None
        if video_id is None:
            return self._failure("No video ID returned from YouTube")
        return PlatformPostResult(
            platform=self.platform,
            success=True,
            post_id=video_id,
            post_url=f"https://www.youtube.com/shorts/{video_id}",
            payload={"upload_status": (body.get("status") or {}).get("uploadStatus")},
        )
