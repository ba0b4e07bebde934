"""
expo_push.py — Mobile push channel via the Expo push gateway.

Delivery mechanism:
    • POST https://exp.host/--/api/v2/push/send
    • Body: JSON array of messages, at most 100 per request
    • Response: JSON receipt ("tickets") per message, logged only

Message shape (one per device token):

    {
      "to": "ExponentPushToken[xxxxxxxx]",
      "sound": "default",
      "priority": "high",
      "title": "⚠️ Orange Alert",
      "body": "<alert description>",
      "data": {"eventid": ..., "episodeid": ..., "eventtype": ...,
               "severity": ..., "fromdate": ..., "todate": ..., "reportUrl": ...}
    }

═══════════════════════════════════════════════════════════════════════════
FAILURE POLICY
═══════════════════════════════════════════════════════════════════════════

Push is best effort. Each batch is its own request; a transport error or
non-2xx response for one batch is logged and reported as FAILED in that
batch's receipt, and the remaining batches are still sent. Nothing is
retried: the persisted notification record is the source of truth, and
the app shows it on its next refresh whether or not the push arrived.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Sequence

import httpx

from backend.app.alerts.models import (
    AlertRecord,
    AlertSummary,
    BatchReceipt,
    DeliveryStatus,
)
from backend.app.core.errors import PushGatewayError

logger = logging.getLogger(__name__)

EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"
MAX_BATCH_SIZE = 100


def build_messages(tokens: Sequence[str], alert: AlertRecord) -> List[Dict[str, Any]]:
    """One gateway message per token, all carrying the same alert payload."""
    title = f"⚠️ {alert.alertlevel} Alert"
    body = alert.htmldescription or alert.description
    data = AlertSummary.from_alert(alert).to_dict()
    return [
        {
            "to": token,
            "sound": "default",
            "priority": "high",
            "title": title,
            "body": body,
            "data": data,
        }
        for token in tokens
    ]


async def _post_batch(
    client: httpx.AsyncClient,
    endpoint: str,
    messages: List[Dict[str, Any]],
    timeout: float,
) -> Any:
    try:
        response = await client.post(
            endpoint,
            json=messages,
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
    except httpx.HTTPError as exc:
        raise PushGatewayError(f"transport error: {exc}") from exc

    if not response.is_success:
        raise PushGatewayError(
            f"HTTP {response.status_code}", status=response.status_code,
        )
    try:
        return response.json()
    except ValueError:
        return response.text


async def send(
    client: httpx.AsyncClient,
    tokens: Sequence[str],
    alert: AlertRecord,
    *,
    endpoint: str = EXPO_PUSH_URL,
    batch_size: int = MAX_BATCH_SIZE,
    timeout: float = 15.0,
) -> List[BatchReceipt]:
    """
    Push one alert to every token, ``batch_size`` tokens per request.

    Parameters
    ----------
    client : httpx.AsyncClient
    tokens : sequence of str
        Device push tokens; empty means nothing is sent.
    alert : AlertRecord
    endpoint : str
        Gateway URL.
    batch_size : int
        Messages per request, capped at the gateway limit of 100.

    Returns
    -------
    list of BatchReceipt
        One receipt per batch attempted. Never raises for gateway errors.
    """
    if not tokens:
        return []

    size = max(1, min(batch_size, MAX_BATCH_SIZE))
    receipts: List[BatchReceipt] = []

    for index, start in enumerate(range(0, len(tokens), size)):
        chunk = list(tokens[start:start + size])
        messages = build_messages(chunk, alert)

        try:
            result = await _post_batch(client, endpoint, messages, timeout)
        except PushGatewayError as exc:
            logger.error(
                "[EXPO_PUSH] Alert %s batch %d (%d tokens) failed: %s",
                alert.doc_id, index, len(chunk), exc.message,
                extra={"alert_id": alert.doc_id, "batch_index": index,
                       "token_count": len(chunk)},
            )
            receipts.append(
                BatchReceipt(
                    batch_index=index,
                    token_count=len(chunk),
                    status=DeliveryStatus.FAILED,
                    error_message=exc.message,
                )
            )
            continue

        logger.info(
            "[EXPO_PUSH] Alert %s batch %d → %d tokens: %s",
            alert.doc_id, index, len(chunk), result,
            extra={"alert_id": alert.doc_id, "batch_index": index,
                   "token_count": len(chunk)},
        )
        receipts.append(
            BatchReceipt(
                batch_index=index,
                token_count=len(chunk),
                status=DeliveryStatus.DELIVERED,
                response=result,
            )
        )

    return receipts
