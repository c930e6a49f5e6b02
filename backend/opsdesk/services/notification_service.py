import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from opsdesk.adapters.whatsapp_client import WhatsAppCloudClient, WhatsAppError
from opsdesk.config import settings
from opsdesk.schemas.refund_schema import RefundMethod, RefundRecord
from opsdesk.utils.log import get_logger

log = get_logger("whatsapp")

METHOD_DISPLAY = {
    RefundMethod.CASH: "efectivo",
    RefundMethod.BANK_DEPOSIT: "depósito bancario",
    RefundMethod.WEB: "reembolso web",
    RefundMethod.UNKNOWN: "otro",
}

TRANSPORT_DISPLAY = {
    "guatex": "Guatex",
    "forza": "Forza",
    "cargo_express": "Cargo Express",
}


class FixedIntervalGate:
    """Constant pause between provider calls. `sleep` is injectable so tests need no real timers."""

    def __init__(self, interval_seconds: float, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.interval = interval_seconds
        self._sleep = sleep

    async def pause(self):
        if self.interval > 0:
            await self._sleep(self.interval)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class NotificationService:
    def __init__(
        self,
        client: WhatsAppCloudClient,
        gate: Optional[FixedIntervalGate] = None,
        language: Optional[str] = None,
        min_phone_length: Optional[int] = None,
    ):
        self.client = client
        self.gate = gate or FixedIntervalGate(settings.WHATSAPP_SEND_INTERVAL_MS / 1000.0)
        self.language = language or settings.WHATSAPP_TEMPLATE_LANGUAGE
        self.min_phone_length = min_phone_length or settings.MIN_PHONE_LENGTH
        self.guide_templates = dict(settings.WHATSAPP_GUIDE_TEMPLATES)

    async def send_one(
        self,
        phone: str,
        template: str,
        parameters: List[Any],
        header: Optional[Dict] = None,
    ) -> Dict:
        """
        Send one template message. Never raises: provider failures come back
        as {"success": False, "error": ...}.
        """
        components = []
        if header:
            components.append({"type": "header", "parameters": [header]})
        components.append(
            {
                "type": "body",
                "parameters": [{"type": "text", "text": str(p)} for p in parameters],
            }
        )
        try:
            log.info(f"sending template {template} to {phone}")
            sent = await self.client.send_template(phone, template, self.language, components)
        except WhatsAppError as e:
            log.warning(f"template {template} to {phone} failed: {e}")
            result = {"success": False, "phone": phone, "error": str(e)}
            if e.code is not None:
                result["errorCode"] = e.code
            return result
        except Exception as e:
            log.exception(f"unexpected error sending {template} to {phone}")
            return {"success": False, "phone": phone, "error": str(e)}

        return {
            "success": True,
            "phone": phone,
            "messageId": sent.get("messageId"),
            "timestamp": _now_iso(),
        }

    def _valid_phone(self, phone: Optional[str]) -> bool:
        return bool(phone) and len(phone.strip()) >= self.min_phone_length

    async def send_bulk(self, items: List[Dict]) -> List[Dict]:
        """
        items: list of {id, selected, phone, template, parameters, header?}
        Returns one result per item in input order, each tagged with the item id.
        """
        results = []
        sent_any = False
        for item in items:
            item_id = item.get("id")
            phone = item.get("phone")
            if not item.get("selected"):
                results.append({"id": item_id, "success": False, "skipped": True, "phone": phone})
                continue
            if not self._valid_phone(phone):
                results.append(
                    {"id": item_id, "success": False, "phone": phone, "error": "Invalid phone number"}
                )
                continue

            if sent_any:
                await self.gate.pause()
            result = await self.send_one(
                phone.strip(), item["template"], item.get("parameters") or [], header=item.get("header")
            )
            sent_any = True
            results.append({"id": item_id, **result})
        return results

    async def send_refund_notification(self, refund: RefundRecord, receipt_url: Optional[str] = None) -> Dict:
        parameters = [
            refund.customer_name or "Cliente",
            refund.order_id or "Sin identificar",
            f"Q{refund.refund_amount:,.2f}",
            METHOD_DISPLAY.get(refund.refund_method, "otro"),
        ]
        if receipt_url:
            order = (refund.order_id or "").lstrip("#") or str(refund.row_index)
            header = {
                "type": "document",
                "document": {"link": receipt_url, "filename": f"comprobante_devolucion_{order}.pdf"},
            }
            return await self.send_one(
                refund.phone, settings.WHATSAPP_REFUND_TEMPLATE, parameters, header=header
            )
        return await self.send_one(refund.phone, settings.WHATSAPP_REFUND_SIMPLE_TEMPLATE, parameters)

    async def handle_incoming_message(self, message: Dict, profile_name: Optional[str] = None) -> Dict:
        """Answer an inbound message with the auto-reply template."""
        sender = message.get("from")
        log.info(f"auto-replying to {sender} (type={message.get('type')})")
        return await self.send_one(sender, settings.WHATSAPP_AUTO_REPLY_TEMPLATE, [profile_name or "Cliente"])

    def guide_template(self, transport: str) -> Optional[str]:
        return self.guide_templates.get(transport)

    def get_templates(self) -> List[Dict]:
        return [
            {"id": key, "name": name, "display_name": TRANSPORT_DISPLAY.get(key, key)}
            for key, name in self.guide_templates.items()
        ]

    def guide_item(self, guide: Dict, transport: str) -> Dict:
        """Shape a shipping guide into a bulk item (header: recipient; body: tracking, address, order)."""
        return {
            "id": guide.get("id"),
            "selected": guide.get("selected", False),
            "phone": guide.get("phone"),
            "template": self.guide_template(transport),
            "header": {"type": "text", "text": guide.get("recipient") or "Cliente"},
            "parameters": [
                guide.get("tracking_number") or "N/A",
                guide.get("address") or "Sin dirección",
                guide.get("order_number") or "Sin identificar",
            ],
        }
