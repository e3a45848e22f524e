"""Deterministic mock publisher for local/dev posting."""

from __future__ import annotations

import hashlib

from src.social.platforms.base import PlatformPostRequest, PlatformPostResult, PostingAccount


class MockPlatformPublisher:
    def __init__(self, platform: str) -> None:
        self.platform = platform

    def upload_video(self, account: PostingAccount, request: PlatformPostRequest) -> PlatformPostResult:
        seed = f"{self.platform}:{account.account_id}:{request.video_url}".encode("utf-8")
        post_id = f"{self.platform}_mock_{hashlib.sha1(seed).hexdigest()[:16]}"
        return PlatformPostResult(
            platform=self.platform,
            success=True,
            post_id=post_id,
            post_url=f"https://mock-{self.platform}.example.com/posts/{post_id}",
            payload={"mock": True},
        )
