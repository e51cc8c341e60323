"""Tests for the OpenTelemetry bootstrap."""

from __future__ import annotations

import pytest

from tcbf.utils.tracing import _resolve_endpoint, get_tracer, setup_telemetry


class TestResolveEndpoint:
    def test_base_url(self):
        assert _resolve_endpoint("http://collector:4318", "traces") == "http://collector:4318/v1/traces"

    def test_trailing_slash(self):
        assert _resolve_endpoint("http://collector:4318/", "logs") == "http://collector:4318/v1/logs"

    def test_full_signal_url_is_normalised(self):
        assert _resolve_endpoint("http://collector:4318/v1/traces", "logs") == "http://collector:4318/v1/logs"

    def test_empty(self):
        assert _resolve_endpoint(None, "traces") is None
        assert _resolve_endpoint("", "traces") is None


class TestSetupTelemetry:
    def test_disabled_without_endpoint(self):
        assert setup_telemetry() == {"tracer_provider": None, "logger_provider": None}


@pytest.mark.asyncio
async def test_expiry_run_works_with_noop_tracer(make_job, entry_store):
    entry_store.add(1)
    with get_tracer("tcbf.test").start_as_current_span("outer"):
        result = await make_job().run()
    assert result.status == "completed"
    assert result.expired_count == 1
