import asyncio
import hashlib
import hmac
from typing import Dict

import aiohttp
from loguru import logger

from webhook_dispatch.common.config import SignatureScheme
from webhook_dispatch.common.metrics import measure_time, metrics
from webhook_dispatch.common.models import DeliveryEnvelope, DeliveryOutcome, WebhookEndpoint


def sign_body(secret: str, body: str) -> str:
    digest = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class DeliveryTransport:
    def __init__(
        self,
        timeout: int = 10,
        signature_scheme: SignatureScheme = SignatureScheme.SECRET,
    ):
        self.timeout = timeout
        self.signature_scheme = signature_scheme

    def signature_for(self, endpoint: WebhookEndpoint, body: str) -> str:
        if self.signature_scheme == SignatureScheme.HMAC_SHA256:
            return sign_body(endpoint.secret, body)
        return endpoint.secret

    def build_headers(
        self, endpoint: WebhookEndpoint, envelope: DeliveryEnvelope, body: str
    ) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-Webhook-Event": envelope.event,
            "X-Webhook-Signature": self.signature_for(endpoint, body),
            "X-Webhook-Timestamp": envelope.timestamp,
        }

    @measure_time(
        metrics.delivery_latency,
        lambda self, endpoint, envelope: {"event": envelope.event},
    )
    async def deliver(
        self, endpoint: WebhookEndpoint, envelope: DeliveryEnvelope
    ) -> DeliveryOutcome:
        """POST the envelope to the endpoint once. Never raises for delivery problems."""
        body = envelope.to_json()
        headers = self.build_headers(endpoint, envelope, body)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    endpoint.url,
                    data=body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    # A redirect is a non-2xx answer; following it would leak the signature.
                    allow_redirects=False,
                ) as response:
                    if 200 <= response.status < 300:
                        metrics.delivery_total.labels(event=envelope.event).inc()
                        logger.info(
                            f"Webhook {envelope.delivery_id} delivered to {endpoint.url} "
                            f"(status={response.status})"
                        )
                        return DeliveryOutcome(
                            endpoint_id=endpoint.id,
                            delivery_id=envelope.delivery_id,
                            success=True,
                            status_code=response.status,
                        )

                    metrics.delivery_errors.labels(
                        event=envelope.event,
                        status_code=response.status,
                    ).inc()
                    logger.warning(
                        f"Webhook failed for {endpoint.url}: {response.status}"
                    )
                    return DeliveryOutcome(
                        endpoint_id=endpoint.id,
                        delivery_id=envelope.delivery_id,
                        success=False,
                        status_code=response.status,
                    )
        except asyncio.TimeoutError:
            error = f"timed out after {self.timeout}s"
        except Exception as e:
            error = str(e) or e.__class__.__name__

        metrics.delivery_errors.labels(event=envelope.event, status_code="error").inc()
        logger.error(f"Webhook dispatch error for {endpoint.url}: {error}")
        return DeliveryOutcome(
            endpoint_id=endpoint.id,
            delivery_id=envelope.delivery_id,
            success=False,
            error=error,
        )
