"""
tests/test_log_publish_event.py - structured job milestone logging.
"""

from schemas.publish_models import PublishStatus
from utils.log_publish_event import log_publish_event


class TestLogPublishEvent:

    def test_ready_event(self):
        data = log_publish_event("publish_ready", "job-1", "ready", url="https://mock-1.vercel.app")

        assert data["event"] == "publish_ready"
        assert data["status"] == "ready"
        assert data["progress"] == 100
        assert data["url"] == "https://mock-1.vercel.app"
        assert data["error"] is None

    def test_failed_event_truncates_error(self):
        data = log_publish_event("publish_failed", "job-1", PublishStatus.FAILED, error="x" * 2000)

        assert data["progress"] == 0
        assert len(data["error"]) == 500
