from typing import Dict, Optional

import httpx


class SettlementError(Exception):
    pass


class PosSettlementClient:
    """
    Client for the POS app that closes deposit returns on the commerce platform
    (return close-out, tax document voiding).
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: Optional[str],
        api_key: Optional[str],
        shop_domain: Optional[str],
    ):
        self.client = client
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.shop_domain = shop_domain

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_key and self.shop_domain)

    async def complete_deposit_return(self, payload: Dict) -> Dict:
        """
        POST {base}/api/complete-deposit-return. Credentials are added here.
        Returns the service's {success, data|error} body.
        """
        if not self.is_configured:
            raise SettlementError("Settlement service not configured")
        body = {"apiKey": self.api_key, "shop": self.shop_domain, **payload}
        try:
            resp = await self.client.post(f"{self.base_url}/api/complete-deposit-return", json=body)
        except httpx.HTTPError as e:
            raise SettlementError(f"settlement request failed: {e}") from e
        try:
            data = resp.json()
        except ValueError:
            raise SettlementError(f"settlement service returned non-JSON (HTTP {resp.status_code})")
        if not isinstance(data, dict):
            raise SettlementError("settlement service returned an unexpected body")
        if resp.status_code >= 400 and "success" not in data:
            data = {"success": False, "error": f"HTTP {resp.status_code}"}
        return data
