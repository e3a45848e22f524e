"""Instagram Reels publisher backed by the Meta Graph API (container + publish)."""

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


INSTAGRAM_CAPTION_LIMIT = 2200


class InstagramPublisher(HttpPlatformClient):
    platform = "instagram"

    def _create_container(self, account: PostingAccount, request: PlatformPostRequest) -> str:
        options = request.options or {}
        params: Dict[str, Any] = {
            "access_token": account.access_token,
            "media_type": "REELS",
            "video_url": request.video_url,
            "caption": caption_with_hashtags(request.caption, request.hashtags, limit=INSTAGRAM_CAPTION_LIMIT),
            "share_to_feed": str(bool(options.get("share_to_feed", True))).lower(),
        }
        if options.get("thumb_offset") is not None:
            params["thumb_offset"] = str(options["thumb_offset"])
        body = self._request("POST", f"{account.platform_account_id}/media", data=params)
        container_id = str(body.get("id") or "").strip()
        if not container_id:
            raise PlatformPublishError("instagram_graph_missing_creation_id")
        return container_id

    def _wait_until_finished(self, account: PostingAccount, container_id: str) -> None:
        for attempt in range(1, self._poll_max_attempts + 1):
            body = self._request(
                "GET",
                container_id,
                params={"fields": "status_code", "access_token": account.access_token},
            )
            status_code = str(body.get("status_code") or "").upper()
            if status_code in {"FINISHED", "PUBLISHED"}:
                return
            if status_code in {"ERROR", "EXPIRED"}:
                raise PlatformPublishError(f"instagram_media_status={status_code}")
            if attempt < self._poll_max_attempts:
                self._sleep(self._poll_interval_seconds)
        raise PlatformPublishError(f"instagram_media_processing_timeout container_id={container_id}")

    def _permalink(self, account: PostingAccount, media_id: str) -> str | None:
        try:
            body = self._request(
                "GET",
                media_id,
                params={"fields": "permalink", "access_token": account.access_token},
            )
        except (PlatformPublishError, httpx.HTTPError):
            return None
        permalink = str(body.get("permalink") or "").strip()
        return permalink or None

    def upload_video(self, account: PostingAccount, request: PlatformPostRequest) -> PlatformPostResult:
        if not (account.platform_account_id or "").strip():
            return self._failure("instagram_account_id_missing")
        if not request.video_url.strip():
            return self._failure("instagram_video_url_missing")
        try:
            container_id = self._create_container(account, request)
            self._wait_until_finished(account, container_id)
            body = self._request(
                "POST",
                f"{account.platform_account_id}/media_publish",
                data={"creation_id": container_id, "access_token": account.access_token},
            )
        except (PlatformPublishError, httpx.HTTPError) as exc:
            return self._failure(str(exc) or exc.__class__.__name__, video_url=request.video_url)

        media_id = str(body.get("id") or "").strip()
        if not media_id:
            return self._failure("instagram_graph_missing_media_id")
        return PlatformPostResult(
            platform=self.platform,
            success=True,
            post_id=media_id,
            post_url=self._permalink(account, media_id),
            payload={"creation_id": container_id},
        )
