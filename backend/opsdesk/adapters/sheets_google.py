from typing import Dict, List
from urllib.parse import quote

import httpx

from opsdesk.adapters.sheets_sql import SheetBackendError
from opsdesk.utils.log import get_logger

log = get_logger("sheets")

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"


class GoogleSheetsBackend:
    """
    Google Sheets v4 values API over httpx.
    Expects an OAuth access token with the spreadsheets scope.
    """

    def __init__(self, client: httpx.AsyncClient, spreadsheet_id: str, access_token: str):
        self.client = client
        self.spreadsheet_id = spreadsheet_id
        self.access_token = access_token

    @property
    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    async def get_values(self, range_a1: str) -> List[List[str]]:
        url = f"{SHEETS_API}/{self.spreadsheet_id}/values/{quote(range_a1, safe='!:')}"
        try:
            resp = await self.client.get(url, headers=self._headers)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error(f"get_values({range_a1}) failed: {e}")
            raise SheetBackendError(f"read {range_a1} failed: {e}") from e
        return body.get("values", [])

    async def batch_update(self, data: Dict[str, str]) -> int:
        body = {
            "valueInputOption": "RAW",
            "data": [{"range": rng, "values": [[value]]} for rng, value in data.items()],
        }
        url = f"{SHEETS_API}/{self.spreadsheet_id}/values:batchUpdate"
        try:
            resp = await self.client.post(url, json=body, headers=self._headers)
            resp.raise_for_status()
            result = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error(f"batch_update({list(data)}) failed: {e}")
            raise SheetBackendError(f"batch update failed: {e}") from e
        return result.get("totalUpdatedCells", len(data))
