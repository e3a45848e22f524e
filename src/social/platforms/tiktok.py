"""TikTok Content Posting API publisher (pull-from-URL upload)."""

from __future__ import annotations

from typing import Any, Dict

import httpx

from src.social.platforms.base import (
    HttpPlatformClient,
    PlatformPostRequest,
    PlatformPostResult,
    PlatformPublishError,
    PostingAccount,
    caption_with_hashtags,
)


TIKTOK_TITLE_LIMIT = 2200


class TikTokPublisher(HttpPlatformClient):
    platform = "tiktok"

    @staticmethod
    def _headers(account: PostingAccount) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {account.access_token}",
            "Content-Type": "application/json; charset=UTF-8",
        }

    @staticmethod
    def _data(body: Dict[str, Any]) -> Dict[str, Any]:
        error = body.get("error")
        if isinstance(error, dict) and str(error.get("code") or "ok") != "ok":
            raise PlatformPublishError(str(error.get("message") or error.get("code") or "tiktok_api_error"))
        data = body.get("data")
        if not isinstance(data, dict):
            raise PlatformPublishError("tiktok_missing_data")
        return data

    def _init_upload(self, account: PostingAccount, request: PlatformPostRequest) -> str:
        options = request.options or {}
        body = self._request(
            "POST",
            "/post/publish/video/init/",
            headers=self._headers(account),
            json={
                "post_info": {
                    "title": caption_with_hashtags(request.caption, request.hashtags, limit=TIKTOK_TITLE_LIMIT),
                    "privacy_level": options.get("privacy_level", "PUBLIC_TO_EVERYONE"),
                    "disable_comment": not options.get("allow_comments", True),
                    "disable_duet": not options.get("allow_duet", True),
                    "disable_stitch": not options.get("allow_stitch", True),
                },
                "source_info": {
                    "source": "PULL_FROM_URL",
                    "video_url": request.video_url,
                },
            },
        )
        publish_id = str(self._data(body).get("publish_id") or "").strip()
        if not publish_id:
            raise PlatformPublishError("tiktok_missing_publish_id")
        return publish_id

    def _wait_for_publish(self, account: PostingAccount, publish_id: str) -> Dict[str, Any]:
        for attempt in range(1, self._poll_max_attempts + 1):
            data = self._data(
                self._request(
                    "POST",
                    "/post/publish/status/fetch/",
                    headers=self._headers(account),
                    json={"publish_id": publish_id},
                )
            )
            status = str(data.get("status") or "").upper()
            if status == "PUBLISH_COMPLETE":
                return data
            if status == "FAILED":
                raise PlatformPublishError(f"tiktok_publish_failed reason={data.get('fail_reason') or 'unknown'}")
            if attempt < self._poll_max_attempts:
                self._sleep(self._poll_interval_seconds)
        raise PlatformPublishError(f"tiktok_publish_timeout publish_id={publish_id}")

    def upload_video(self, account: PostingAccount, request: PlatformPostRequest) -> PlatformPostResult:
        if not request.video_url.strip():
            return self._failure("tiktok_video_url_missing")
        try:
            publish_id = self._init_upload(account, request)
            data = self._wait_for_publish(account, publish_id)
        except (PlatformPublishError, httpx.HTTPError) as exc:
            return self._failure(str(exc) or exc.__class__.__name__, video_url=request.video_url)

        post_ids = data.get("publicaly_available_post_id") or data.get("publicly_available_post_id") or []
        post_id = str(post_ids[0]) if isinstance(post_ids, list) and post_ids else publish_id
        post_url = f"https://www.tiktok.com/@{account.username}/video/{post_id}" if post_ids else None
        return PlatformPostResult(
            platform=self.platform,
            success=True,
            post_id=post_id,
            post_url=post_url,
            payload={"publish_id": publish_id},
        )
