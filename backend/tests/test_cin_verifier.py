"""
Contrat de Vente - Client du service de vérification CIN
Transport simulé (httpx.MockTransport), aucun appel réseau.
Run: cd backend && pytest tests/test_cin_verifier.py -v
"""

import importlib
import json

import httpx
import pytest

import config
from services.cin_verifier import CINVerificationError, CINVerifier

API_URL = "https://verify.test/functions/v1/verify-cin"


def make_verifier(handler, api_key="secret", timeout=30):
    return CINVerifier(
        api_url=API_URL,
        api_key=api_key,
        timeout=timeout,
        transport=httpx.MockTransport(handler),
    )


class TestVerdicts:

    @pytest.mark.asyncio
    async def test_valid_verdict_and_request_format(self):
        captured = {}

        def handler(request: httpx.Request):
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"valid": True})

        verdict = await make_verifier(handler).verify("aW1hZ2U=")

        assert verdict.valid is True
        assert verdict.reason is None
        assert captured["url"] == API_URL
        assert captured["auth"] == "Bearer secret"
        assert captured["body"] == {"imageBase64": "aW1hZ2U="}
        print("✅ POST {imageBase64} + Bearer")

    @pytest.mark.asyncio
    async def test_invalid_verdict_with_reason(self):
        def handler(request):
            return httpx.Response(200, json={"valid": False, "reason": "blurry image"})

        verdict = await make_verifier(handler).verify("aW1hZ2U=")
        assert verdict.valid is False
        assert verdict.reason == "blurry image"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        def handler(request):
            assert "Authorization" not in request.headers
            return httpx.Response(200, json={"valid": True})

        verdict = await make_verifier(handler, api_key="").verify("aW1hZ2U=")
        assert verdict.valid is True


class TestFailures:
    """Toute erreur transport / service -> CINVerificationError"""

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        def handler(request):
            return httpx.Response(500, text="Internal Server Error")

        with pytest.raises(CINVerificationError) as exc_info:
            await make_verifier(handler).verify("aW1hZ2U=")
        assert "HTTP 500" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(CINVerificationError) as exc_info:
            await make_verifier(handler).verify("aW1hZ2U=")
        assert "Timeout" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connexion refusée", request=request)

        with pytest.raises(CINVerificationError):
            await make_verifier(handler).verify("aW1hZ2U=")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", ["pas du json", json.dumps({"reason": "sans verdict"})])
    async def test_malformed_body(self, body):
        def handler(request):
            return httpx.Response(200, text=body)

        with pytest.raises(CINVerificationError):
            await make_verifier(handler).verify("aW1hZ2U=")


class TestTimeoutSetting:

    def test_zero_disables_timeout(self):
        assert CINVerifier(api_url=API_URL, timeout=0).timeout is None
        assert CINVerifier(api_url=API_URL, timeout=12.5).timeout == 12.5

    def test_no_client_timeout_by_default(self, monkeypatch):
        monkeypatch.delenv("CIN_VERIFY_TIMEOUT", raising=False)
        reloaded = importlib.reload(config)

        assert reloaded.CIN_VERIFY_TIMEOUT == 0
        assert CINVerifier(api_url=API_URL, timeout=reloaded.CIN_VERIFY_TIMEOUT).timeout is None
