"""
test_orchestrator.py - provider fallback chain

- totality when the basic-transparency fallback is enabled
- size check before any provider is contacted
- short-circuit on first success
- unconfigured providers skipped, never attempted
"""

from unittest.mock import MagicMock

import pytest

from mediakit_service.codec import BASIC_TRANSPARENCY_NAME, basic_transparency
from mediakit_service.errors import (
    AllProvidersFailed,
    PaymentRequired,
    ProviderFailure,
    RateLimited,
    SizeExceeded,
    Unconfigured,
)
from mediakit_service.orchestrator import FallbackOrchestrator, build_backends
from mediakit_service.providers import ProviderRegistry
from mediakit_service.schemas import RemovalRequest


def _orchestrator(settings, *backends):
    return FallbackOrchestrator(settings, backends={b.key: b for b in backends})


class TestAutoRemove:

    def test_first_success_short_circuits(self, settings, image_bytes, make_backend):
        a = make_backend("a", error=ProviderFailure("A down"))
        b = make_backend("b", cost=0.02)
        c = make_backend("c", cost=0.10)
        orchestrator = _orchestrator(settings, a, b, c)

        result = orchestrator.auto_remove(RemovalRequest(image_bytes), priority=["a", "b", "c"])

        assert result.provider_name == "B"
        assert result.cost_incurred == 0.02
        assert (a.calls, b.calls, c.calls) == (1, 1, 0)
        assert [key for key, _ in result.failures] == ["a"]
        assert result.failures[0][1].code == "PROVIDER_FAILED"

    def test_size_exceeded_before_any_provider(self, settings, make_backend):
        a = make_backend("a")
        orchestrator = _orchestrator(settings, a)

        with pytest.raises(SizeExceeded):
            orchestrator.auto_remove(RemovalRequest(b"x" * 101), priority=["a"], max_input_size=100)

        assert a.calls == 0

    def test_size_limit_defaults_to_settings(self, settings, make_backend):
        settings.max_input_bytes = 10
        a = make_backend("a")

        with pytest.raises(SizeExceeded):
            _orchestrator(settings, a).auto_remove(RemovalRequest(b"x" * 11), priority=["a"])
        assert a.calls == 0

    def test_input_at_limit_is_accepted(self, settings, make_backend):
        a = make_backend("a")
        result = _orchestrator(settings, a).auto_remove(
            RemovalRequest(b"x" * 100), priority=["a"], max_input_size=100
        )
        assert result.success is True

    def test_all_fail_with_fallback_is_total(self, settings, image_bytes, make_backend):
        backends = [
            make_backend("a", error=RateLimited("slow down")),
            make_backend("b", error=PaymentRequired("no credits")),
            make_backend("c", error=ProviderFailure("boom")),
        ]
        orchestrator = _orchestrator(settings, *backends)

        result = orchestrator.auto_remove(RemovalRequest(image_bytes), priority=["a", "b", "c"])

        assert result.success is True
        assert result.provider_name == BASIC_TRANSPARENCY_NAME
        assert result.cost_incurred == 0
        assert result.output_bytes == basic_transparency(image_bytes, settings.basic_transparency_threshold)
        assert [err.code for _, err in result.failures] == [
            "RATE_LIMITED",
            "PAYMENT_REQUIRED",
            "PROVIDER_FAILED",
        ]

    def test_all_fail_without_fallback_raises(self, settings, image_bytes, make_backend):
        orchestrator = _orchestrator(settings, make_backend("a", error=ProviderFailure("boom")))

        with pytest.raises(AllProvidersFailed) as exc_info:
            orchestrator.auto_remove(RemovalRequest(image_bytes), priority=["a"], fallback_to_local=False)

        assert exc_info.value.context["failures"][0]["provider"] == "a"

    def test_unexpected_backend_error_moves_to_next_provider(self, settings, image_bytes, make_backend):
        broken = make_backend("a", error=KeyError("boom"))
        working = make_backend("b")
        orchestrator = _orchestrator(settings, broken, working)

        result = orchestrator.auto_remove(RemovalRequest(image_bytes), priority=["a", "b"])

        assert result.provider_name == "B"
        assert result.failures[0][0] == "a"
        assert result.failures[0][1].code == "PROVIDER_FAILED"
        assert "boom" in result.failures[0][1].message

    def test_unexpected_backend_error_still_reaches_fallback(self, settings, image_bytes, make_backend):
        orchestrator = _orchestrator(settings, make_backend("a", error=KeyError("boom")))

        result = orchestrator.auto_remove(RemovalRequest(image_bytes), priority=["a"], fallback_to_local=True)

        assert result.provider_name == BASIC_TRANSPARENCY_NAME
        assert result.cost_incurred == 0

    def test_fallback_flag_defaults_to_settings(self, settings, image_bytes, make_backend):
        settings.fallback_to_local = False
        orchestrator = _orchestrator(settings, make_backend("a", error=ProviderFailure("boom")))

        with pytest.raises(AllProvidersFailed):
            orchestrator.auto_remove(RemovalRequest(image_bytes), priority=["a"])

    def test_unconfigured_provider_is_skipped(self, settings, image_bytes, make_backend):
        missing = make_backend("missing", configured=False)
        ok = make_backend("ok")

        result = _orchestrator(settings, missing, ok).auto_remove(
            RemovalRequest(image_bytes), priority=["missing", "ok"]
        )

        assert missing.calls == 0
        assert result.provider_name == "OK"
        assert result.failures[0][1].code == "UNCONFIGURED"

    def test_unknown_priority_entry_is_skipped(self, settings, image_bytes, make_backend):
        ok = make_backend("ok")
        result = _orchestrator(settings, ok).auto_remove(RemovalRequest(image_bytes), priority=["nope", "ok"])

        assert result.provider_name == "OK"
        assert result.failures[0][1].code == "UNKNOWN_PROVIDER"

    def test_empty_priority_goes_straight_to_fallback(self, settings, image_bytes):
        result = _orchestrator(settings).auto_remove(RemovalRequest(image_bytes), priority=[])
        assert result.provider_name == BASIC_TRANSPARENCY_NAME

    def test_default_priority_from_settings(self, settings, image_bytes, make_backend):
        settings.provider_priority = "b, a"
        a = make_backend("a")
        b = make_backend("b")

        result = _orchestrator(settings, a, b).auto_remove(RemovalRequest(image_bytes))

        assert result.provider_name == "B"
        assert a.calls == 0

    def test_request_is_not_mutated(self, settings, image_bytes, make_backend):
        request = RemovalRequest(image_bytes)
        _orchestrator(settings, make_backend("a", error=ProviderFailure("x"))).auto_remove(request, priority=["a"])
        assert request.image_bytes == image_bytes


def _response(status_code, content=b"", headers=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content
    resp.text = content.decode(errors="replace")
    resp.reason = "status"
    resp.headers = headers or {}
    return resp


class TestRemoteScenarios:

    def test_all_remote_rate_limited_falls_back_at_zero_cost(self, settings, image_bytes):
        settings.clipdrop_api_key = "cd-key"
        registry = ProviderRegistry.from_settings(settings)
        session = MagicMock()
        session.post.return_value = _response(429)
        backends = build_backends(settings, registry, session=session)
        orchestrator = FallbackOrchestrator(settings, registry=registry, backends=backends)

        result = orchestrator.auto_remove(
            RemovalRequest(image_bytes), priority=["removebg", "backgrounds", "clipdrop"]
        )

        assert session.post.call_count == 3
        assert result.provider_name == BASIC_TRANSPARENCY_NAME
        assert result.cost_incurred == 0
        assert {err.code for _, err in result.failures} == {"RATE_LIMITED"}

    def test_remove_with_service_unconfigured_makes_no_call(self, settings, image_bytes):
        registry = ProviderRegistry.from_settings(settings)
        session = MagicMock()
        orchestrator = FallbackOrchestrator(
            settings, registry=registry, backends=build_backends(settings, registry, session=session)
        )

        with pytest.raises(Unconfigured):
            orchestrator.remove_with_service("clipdrop", RemovalRequest(image_bytes))

        session.post.assert_not_called()

    def test_remove_with_service_success(self, settings, image_bytes):
        registry = ProviderRegistry.from_settings(settings)
        session = MagicMock()
        session.post.return_value = _response(200, b"PNGDATA", {"content-type": "image/png"})
        orchestrator = FallbackOrchestrator(
            settings, registry=registry, backends=build_backends(settings, registry, session=session)
        )

        result = orchestrator.remove_with_service("removebg", RemovalRequest(image_bytes))

        assert result.provider_name == "Remove.bg"
        assert result.output_bytes == b"PNGDATA"
        assert result.cost_incurred == 0.02

    def test_local_without_checkpoint_is_skipped(self, settings, image_bytes):
        registry = ProviderRegistry.from_settings(settings)
        session = MagicMock()
        session.post.return_value = _response(200, b"PNGDATA", {"content-type": "image/png"})
        orchestrator = FallbackOrchestrator(
            settings, registry=registry, backends=build_backends(settings, registry, session=session)
        )

        result = orchestrator.auto_remove(RemovalRequest(image_bytes), priority=["local", "removebg"])

        assert result.provider_name == "Remove.bg"
        assert result.failures[0][0] == "local"
        assert result.failures[0][1].code == "UNCONFIGURED"
