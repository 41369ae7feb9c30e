"""Tests for Sentry event scrubbing and scan tagging."""

import uuid

import sentry_sdk

from app.core.sentry import FILTERED, scan_scope, scrub_event


class TestScrubEvent:
    def test_secret_headers_replaced(self):
        event = {
            "request": {
                "url": "https://api.example.com/v1/chat",
                "headers": {"Authorization": "Bearer sk-abcdef123456", "Content-Type": "application/json"},
            }
        }
        scrubbed = scrub_event(event)
        assert scrubbed["request"]["headers"]["Authorization"] == FILTERED
        assert scrubbed["request"]["headers"]["Content-Type"] == "application/json"

    def test_keys_in_messages_masked(self):
        event = {
            "exception": {
                "values": [
                    {"value": "401 from https://generativelanguage.googleapis.com/v1/models?key=AIzaSyA1b2c3d4e5&alt=json"},
                    {"value": "auth failed for sk-proj-9f8e7d6c5b4a and pplx-0a1b2c3d4e5f"},
                ]
            }
        }
        values = [v["value"] for v in scrub_event(event)["exception"]["values"]]
        assert values[0] == "401 from https://generativelanguage.googleapis.com/v1/models?key=[Filtered]&alt=json"
        assert values[1] == "auth failed for sk-[Filtered] and pplx-[Filtered]"

    def test_bearer_token_in_text(self):
        event = {"message": "sent Authorization: Bearer abc.def-ghi_123456"}
        assert scrub_event(event)["message"] == "sent Authorization: Bearer [Filtered]"

    def test_api_key_fields_in_extra(self):
        event = {"extra": {"api_key": "anything", "provider": "openai", "attempts": 3}}
        assert scrub_event(event)["extra"] == {"api_key": FILTERED, "provider": "openai", "attempts": 3}

    def test_ordinary_text_untouched(self):
        event = {"message": "Job 42: risk-assessment task-queue finished", "tags": [("env", "test")]}
        assert scrub_event(event) == event


class TestScanScope:
    def test_tags_job_and_tenant_inside_block(self):
        job_id, tenant_id = uuid.uuid4(), uuid.uuid4()
        with scan_scope(job_id, tenant_id):
            tags = sentry_sdk.get_current_scope()._tags
            assert tags["job_id"] == str(job_id)
            assert tags["tenant_id"] == str(tenant_id)
        assert "job_id" not in sentry_sdk.get_current_scope()._tags
