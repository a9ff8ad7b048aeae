"""Tests for render strategy routing."""

import pytest

from render_worker.render.pacing import DurationBucket
from render_worker.render.router import RenderStrategy, route_job, select_strategy
from render_worker.schemas.jobs import parse_job_payload


class TestSelectStrategy:
    """Tests for bucket-based routing."""

    @pytest.mark.parametrize("bucket", ["30-60", DurationBucket.SHORT])
    def test_short_bucket_remote_when_enabled(self, bucket):
        """Test that the shortest bucket renders remotely."""
        assert select_strategy(bucket, remote_enabled=True) is RenderStrategy.REMOTE_RENDER

    def test_remote_disabled(self):
        """Test that everything encodes locally when remote rendering is off."""
        assert select_strategy("30-60", remote_enabled=False) is RenderStrategy.LOCAL_ENCODE

    @pytest.mark.parametrize("bucket", ["60-90", "90-120", "15-30", "", None])
    def test_other_buckets_local(self, bucket):
        """Test that longer and unknown buckets encode locally."""
        assert select_strategy(bucket, remote_enabled=True) is RenderStrategy.LOCAL_ENCODE

    def test_strategy_values(self):
        """Test the queue-facing strategy names."""
        assert RenderStrategy.LOCAL_ENCODE.value == "local"
        assert RenderStrategy.REMOTE_RENDER.value == "remote"


class TestRouteJob:
    """Tests for payload-kind routing."""

    def _job(self, kind, **extra):
        base = {"kind": kind, "mediaId": "m1", "stepId": "s1", "userId": "u1"}
        base.update(extra)
        return parse_job_payload(base)

    def test_reel_follows_bucket(self):
        """Test that reels use the bucket policy."""
        job = self._job("reel", durationBucket="60-90", assets={"audio": "a.mp3"})
        assert route_job(job, remote_enabled=True) is RenderStrategy.LOCAL_ENCODE

        job = self._job("reel", durationBucket="30-60", assets={"audio": "a.mp3"})
        assert route_job(job, remote_enabled=True) is RenderStrategy.REMOTE_RENDER

    def test_stock_video_always_remote(self):
        """Test that stock-video jobs render remotely regardless of bucket."""
        job = self._job("stock_video", durationBucket="90-120", assets={"audio": "a.mp3", "stockVideos": ["c.mp4"]})
        assert route_job(job, remote_enabled=False) is RenderStrategy.REMOTE_RENDER

    def test_kinetic_always_remote(self):
        """Test that kinetic jobs render remotely."""
        job = parse_job_payload({
            "kind": "kinetic",
            "projectId": "p1",
            "userId": "u1",
            "inputProps": {"timeline": [{"word": "Hi"}]},
        })
        assert route_job(job, remote_enabled=False) is RenderStrategy.REMOTE_RENDER

    def test_video_tools_always_local(self):
        """Test that video tools encode locally even with remote rendering on."""
        job = parse_job_payload({
            "kind": "video_tools",
            "projectId": "p1",
            "userId": "u1",
            "inputBlobId": "clip.mp4",
            "toolType": "video-compress",
        })
        assert route_job(job, remote_enabled=True) is RenderStrategy.LOCAL_ENCODE
