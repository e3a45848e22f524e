from __future__ import annotations

from pathlib import Path


def test_video_pipeline_migration_declares_tables_and_constraints() -> None:
    migration_path = Path("migrations/versions/20261019_0001_video_pipeline_core.py")
    source = migration_path.read_text(encoding="utf-8")

    assert 'revision = "20261019_0001"' in source
    assert "down_revision = None" in source

    assert "\"generation_jobs\"," in source
    assert "\"social_accounts\"," in source
    assert "\"social_posts\"," in source
    assert "\"pipeline_events\"," in source

    assert "ck_generation_jobs_attempt_count_max" in source
    assert "ck_social_accounts_used_today_non_negative" in source
    assert "uq_social_accounts_tenant_platform_username" in source
    assert "uq_pipeline_events_dedupe_key" in source
    assert "ix_pipeline_events_status_available_at" in source
    assert "ix_social_posts_job_platform" in source
    assert 'ondelete="CASCADE"' in source


def test_video_pipeline_migration_downgrade_drops_every_table() -> None:
    source = Path("migrations/versions/20261019_0001_video_pipeline_core.py").read_text(encoding="utf-8")
    downgrade = source.split("def downgrade()", 1)[1]

    for table in ("pipeline_events", "social_posts", "social_accounts", "generation_jobs"):
        assert f'op.drop_table("{table}")' in downgrade
