from typing import Dict, Optional

from opsdesk.services.dedup_cache import MessageDedupCache
from opsdesk.services.notification_service import NotificationService
from opsdesk.utils.log import get_logger

log = get_logger("webhook")

WHATSAPP_OBJECT = "whatsapp_business_account"


class WebhookService:
    """
    Receives WhatsApp Business webhook deliveries. The HTTP layer acknowledges
    first and then hands the body to process() off the response path.
    """

    def __init__(
        self,
        notifier: NotificationService,
        dedup: MessageDedupCache,
        verify_token: Optional[str],
    ):
        self.notifier = notifier
        self.dedup = dedup
        self.verify_token = verify_token

    def verify(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Return the challenge to echo when the subscription handshake is valid, else None."""
        log.info(f"verification request mode={mode} token={'***' if token else 'missing'}")
        if mode == "subscribe" and self.verify_token and token == self.verify_token:
            log.info("webhook verified")
            return challenge or ""
        log.warning("webhook verification failed")
        return None

    def is_whatsapp_notification(self, body: Dict) -> bool:
        return isinstance(body, dict) and body.get("object") == WHATSAPP_OBJECT

    async def process(self, body: Dict) -> Dict:
        summary = {"processed": 0, "duplicates": 0, "skipped": 0, "failed": 0}
        for entry in body.get("entry") or []:
            if not isinstance(entry, dict):
                log.warning(f"skipping malformed entry {entry!r}")
                summary["skipped"] += 1
                continue
            for change in entry.get("changes") or []:
                try:
                    await self._handle_change(change, summary)
                except Exception:
                    # later changes and entries in the delivery still run
                    log.exception(f"error handling change in entry {entry.get('id')}")
                    summary["failed"] += 1
        log.info(f"webhook processed: {summary}")
        return summary

    async def _handle_change(self, change: Dict, summary: Dict):
        if change.get("field") != "messages":
            log.debug(f"skipping change field={change.get('field')}")
            return
        value = change.get("value") or {}
        messages = value.get("messages") or []
        if not messages:
            # delivery / read receipts only
            return
        names = {
            c.get("wa_id"): (c.get("profile") or {}).get("name")
            for c in value.get("contacts") or []
        }
        for message in messages:
            await self._handle_message(message, names, summary)

    async def process_acknowledged(self, body: Dict) -> Optional[Dict]:
        """process() for bodies already answered with 200: errors are logged, never raised."""
        try:
            return await self.process(body)
        except Exception:
            log.exception("webhook processing failed after acknowledgement")
            return None

    async def _handle_message(self, message: Dict, names: Dict, summary: Dict):
        message_id = message.get("id")
        sender = message.get("from")
        if message.get("type") == "system" or not sender or not message_id:
            summary["skipped"] += 1
            return
        if self.dedup.check_and_record(message_id):
            log.debug(f"skipping duplicate message {message_id}")
            summary["duplicates"] += 1
            return

        try:
            result = await self.notifier.handle_incoming_message(message, profile_name=names.get(sender))
        except Exception:
            # one bad message must not stop its siblings; the 200 has already been sent
            log.exception(f"error handling message {message_id} from {sender}")
            summary["failed"] += 1
            return
        if result.get("success"):
            summary["processed"] += 1
        else:
            summary["failed"] += 1
