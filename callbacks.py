"""In-memory correlation of STK pushes with their asynchronous callbacks.

The provider delivers callbacks at least once and in no particular order, so
resolving an already-resolved CheckoutRequestID is a logged no-op.
"""

import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from models import CallbackPayload, PushAcknowledgment, StkCallback
from mpesa import MalformedCallbackError

logger = logging.getLogger(__name__)

PENDING = "PENDING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class PushRegistry:
    """Maps CheckoutRequestID to the originating push and its final outcome.

    Holds at most ``max_entries`` ids; the oldest is evicted first.
    """

    def __init__(self, max_entries: int = 10_000):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _store(self, key: str, entry: Dict[str, Any]) -> None:
        # caller holds the lock
        self._entries[key] = entry
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Registry full, evicted CheckoutRequestID={evicted}")

    def record_push(self, ack: PushAcknowledgment, amount: float, phone_number: str) -> None:
        if not ack.checkout_request_id:
            return
        with self._lock:
            if ack.checkout_request_id in self._entries:
                return
            self._store(
                ack.checkout_request_id,
                {
                    "checkout_request_id": ack.checkout_request_id,
                    "merchant_request_id": ack.merchant_request_id,
                    "amount": amount,
                    "phone_number": phone_number,
                    "status": PENDING,
                    "result_code": None,
                    "result_desc": None,
                    "metadata": {},
                    "created_at": _now(),
                    "resolved_at": None,
                },
            )

    def resolve(self, callback: StkCallback) -> bool:
        """Apply a callback outcome. Returns False when it was already applied."""
        key = callback.checkout_request_id or ""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                logger.warning(f"Callback for unknown CheckoutRequestID={key}")
                entry = {
                    "checkout_request_id": key,
                    "merchant_request_id": callback.merchant_request_id,
                    "amount": None,
                    "phone_number": None,
                    "status": PENDING,
                    "created_at": _now(),
                }
                self._store(key, entry)
            elif entry["status"] != PENDING:
                return False

            entry.update(
                status=COMPLETED if callback.result_code == 0 else FAILED,
                result_code=callback.result_code,
                result_desc=callback.result_desc,
                metadata=callback.metadata_dict(),
                resolved_at=_now(),
            )
            return True

    def get(self, checkout_request_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            entry = self._entries.get(checkout_request_id)
            return dict(entry) if entry is not None else None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def parse_callback(payload: Any) -> StkCallback:
    try:
        return CallbackPayload.model_validate(payload).body.stk_callback
    except ValidationError as e:
        raise MalformedCallbackError(f"Callback missing Body.stkCallback: {e.error_count()} error(s)") from e


def process_callback(payload: Any, registry: PushRegistry) -> None:
    """Interpret a callback after it has been acknowledged.

    Never raises: the acknowledgment has already been sent.
    """
    try:
        callback = parse_callback(payload)
    except MalformedCallbackError as e:
        logger.warning(f"Malformed M-Pesa callback: {e}")
        return

    if not registry.resolve(callback):
        logger.info(f"Duplicate callback ignored CheckoutRequestID={callback.checkout_request_id}")
        return

    if callback.result_code == 0:
        receipt = callback.metadata_dict().get("MpesaReceiptNumber")
        logger.info(f"Payment successful CheckoutRequestID={callback.checkout_request_id} receipt={receipt}")
    else:
        logger.info(
            f"Payment failed CheckoutRequestID={callback.checkout_request_id} "
            f"ResultCode={callback.result_code}: {callback.result_desc}"
        )
