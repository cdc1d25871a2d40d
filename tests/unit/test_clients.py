"""
test_clients.py - single-provider removal attempts

Remote HTTP status mapping (402/429/other), request shape, local runner.
"""

from unittest.mock import MagicMock

import pytest
import requests

from mediakit_service.clients import LocalModelClient, RemoteProviderClient
from mediakit_service.errors import (
    DecodeError,
    PaymentRequired,
    ProviderFailure,
    RateLimited,
    Unconfigured,
)
from mediakit_service.providers import LOCAL_MODELS, ProviderDescriptor
from mediakit_service.schemas import RemovalOptions, RemovalRequest


@pytest.fixture
def descriptor() -> ProviderDescriptor:
    return ProviderDescriptor(
        key="removebg",
        name="Remove.bg",
        endpoint_url="https://example.test/remove",
        credential="secret",
        cost_per_image=0.02,
    )


def _session(status_code=200, content=b"PNG", headers=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.content = content
    resp.text = content.decode(errors="replace")
    resp.reason = "reason"
    resp.headers = headers if headers is not None else {"content-type": "image/png"}
    session = MagicMock()
    session.post.return_value = resp
    return session


class TestRemoteProviderClient:

    def test_success_builds_multipart_request(self, descriptor):
        session = _session(content=b"CUTOUT", headers={"content-type": "image/webp"})
        client = RemoteProviderClient(descriptor, session=session, timeout_seconds=12)
        request = RemovalRequest(b"img", RemovalOptions(size="auto", output_format="png", background_color="ffffff"))

        result = client.try_remove(request)

        assert result.success is True
        assert result.output_bytes == b"CUTOUT"
        assert result.content_type == "image/webp"
        assert result.cost_incurred == 0.02
        assert result.provider_name == "Remove.bg"

        _, kwargs = session.post.call_args
        assert session.post.call_args[0][0] == "https://example.test/remove"
        assert kwargs["headers"] == {"X-Api-Key": "secret"}
        assert kwargs["files"]["image_file"] == ("image.jpg", b"img", "image/jpeg")
        assert kwargs["data"] == {"size": "auto", "format": "png", "bg_color": "ffffff"}
        assert kwargs["timeout"] == (5, 12)

    def test_missing_content_type_defaults_to_png(self, descriptor):
        client = RemoteProviderClient(descriptor, session=_session(headers={}))
        assert client.try_remove(RemovalRequest(b"img")).content_type == "image/png"

    @pytest.mark.parametrize(
        "status,error",
        [(402, PaymentRequired), (429, RateLimited), (500, ProviderFailure), (404, ProviderFailure)],
    )
    def test_status_mapping(self, descriptor, status, error):
        client = RemoteProviderClient(descriptor, session=_session(status_code=status, content=b"nope"))

        with pytest.raises(error):
            client.try_remove(RemovalRequest(b"img"))

    def test_network_error_is_provider_failure(self, descriptor):
        session = MagicMock()
        session.post.side_effect = requests.ConnectionError("connection refused")
        client = RemoteProviderClient(descriptor, session=session)

        with pytest.raises(ProviderFailure) as exc_info:
            client.try_remove(RemovalRequest(b"img"))

        assert "connection refused" in exc_info.value.message

    def test_non_latin1_credential_is_provider_failure(self, descriptor):
        session = MagicMock()
        session.post.side_effect = UnicodeEncodeError("latin-1", "key—pasted", 3, 4, "ordinal not in range(256)")
        client = RemoteProviderClient(descriptor, session=session)

        with pytest.raises(ProviderFailure, match="latin-1"):
            client.try_remove(RemovalRequest(b"img"))

    def test_missing_credential_makes_no_call(self, descriptor):
        unconfigured = ProviderDescriptor(
            key="clipdrop",
            name="Clipdrop",
            endpoint_url="https://example.test",
            credential=None,
            cost_per_image=0.1,
        )
        session = _session()
        client = RemoteProviderClient(unconfigured, session=session)

        assert client.is_configured is False
        with pytest.raises(Unconfigured):
            client.try_remove(RemovalRequest(b"img"))
        session.post.assert_not_called()


class TestLocalModelClient:

    def test_runner_result_is_free(self, settings):
        client = LocalModelClient(LOCAL_MODELS["modnet"], settings, runner=lambda data: data[::-1])

        result = client.try_remove(RemovalRequest(b"abc"))

        assert result.output_bytes == b"cba"
        assert result.cost_incurred == 0
        assert result.provider_name == "Local: MODNet"
        assert result.content_type == "image/png"

    def test_unconfigured_without_checkpoint(self, settings):
        client = LocalModelClient(LOCAL_MODELS["modnet"], settings)

        assert client.is_configured is False
        with pytest.raises(Unconfigured):
            client.try_remove(RemovalRequest(b"abc"))

    def test_configured_with_checkpoint_path(self, settings, tmp_path):
        settings.local_model_path = tmp_path / "model.pt"
        assert LocalModelClient(LOCAL_MODELS["u2net"], settings).is_configured is True

    def test_runner_crash_becomes_provider_failure(self, settings):
        def runner(data):
            raise RuntimeError("CUDA out of memory")

        client = LocalModelClient(LOCAL_MODELS["modnet"], settings, runner=runner)

        with pytest.raises(ProviderFailure, match="CUDA out of memory"):
            client.try_remove(RemovalRequest(b"abc"))

    def test_service_errors_pass_through(self, settings):
        def runner(data):
            raise DecodeError("Invalid image data")

        client = LocalModelClient(LOCAL_MODELS["modnet"], settings, runner=runner)

        with pytest.raises(DecodeError):
            client.try_remove(RemovalRequest(b"abc"))
