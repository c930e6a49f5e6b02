from typing import Dict, List, Optional

import httpx


class WhatsAppError(Exception):
    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class WhatsAppCloudClient:
    """
    Minimal WhatsApp Cloud API client. Business-initiated messages must use
    pre-approved templates, so template sends are the only operation.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        phone_number_id: Optional[str],
        access_token: Optional[str],
        api_version: str = "v18.0",
    ):
        self.client = client
        self.phone_number_id = phone_number_id
        self.access_token = access_token
        self.api_url = f"https://graph.facebook.com/{api_version}/{phone_number_id}/messages"

    @property
    def is_configured(self) -> bool:
        return bool(self.phone_number_id and self.access_token)

    async def send_template(
        self, to: str, template_name: str, language_code: str, components: List[Dict]
    ) -> Dict:
        if not self.is_configured:
            raise WhatsAppError("WhatsApp credentials not configured")
        body = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language_code},
                "components": components,
            },
        }
        try:
            resp = await self.client.post(
                self.api_url,
                json=body,
                headers={"Authorization": f"Bearer {self.access_token}"},
            )
        except httpx.HTTPError as e:
            raise WhatsAppError(f"WhatsApp request failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            err = data.get("error") or {}
            raise WhatsAppError(err.get("message") or f"HTTP {resp.status_code}", code=err.get("code"))
        messages = data.get("messages") or [{}]
        return {"messageId": messages[0].get("id")}
