"""
Service de vérification CIN (externe)

Envoie la photo (base64) au service de reconnaissance et retourne son verdict.

Format API:
- Endpoint: POST {CIN_VERIFY_URL}
- Auth: Header Authorization: Bearer {CIN_VERIFY_API_KEY}
- Body: {"imageBase64": "..."}
- Réponse: {"valid": true|false, "reason": "..."}

Deux échecs bien distincts pour l'appelant:
- verdict structuré valid=false  -> CINVerdict(valid=False, reason=...)
- erreur transport / service     -> CINVerificationError
"""

import logging
from typing import Optional

import httpx
from pydantic import BaseModel, ValidationError

from config import CIN_VERIFY_API_KEY, CIN_VERIFY_TIMEOUT, CIN_VERIFY_URL

logger = logging.getLogger("cin_verifier")


class CINVerdict(BaseModel):
    valid: bool
    reason: Optional[str] = None


class CINVerificationError(Exception):
    """Erreur réseau / service pendant la vérification"""
    pass


class CINVerifier:
    """Client HTTP du service de vérification"""

    def __init__(
        self,
        api_url: str = CIN_VERIFY_URL,
        api_key: str = CIN_VERIFY_API_KEY,
        timeout: Optional[float] = CIN_VERIFY_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        # 0 ou None: pas de timeout côté client
        self.timeout = timeout or None
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def verify(self, image_base64: str) -> CINVerdict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as http_client:
                response = await http_client.post(
                    self.api_url,
                    json={"imageBase64": image_base64},
                    headers=self._headers()
                )
        except httpx.TimeoutException as e:
            raise CINVerificationError("Timeout - le service de vérification ne répond pas") from e
        except httpx.HTTPError as e:
            raise CINVerificationError(f"Erreur réseau: {str(e)}") from e

        if response.status_code >= 400:
            raise CINVerificationError(
                f"Service de vérification en erreur: HTTP {response.status_code} - {response.text[:200]}"
            )

        try:
            verdict = CINVerdict.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise CINVerificationError(f"Réponse invalide du service: {str(e)}") from e

        logger.info(f"[CIN] Verdict: valid={verdict.valid} reason={verdict.reason}")
        return verdict
