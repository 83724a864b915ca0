import hashlib
import hmac
import json
import logging
import uuid

import requests
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from apps.orders.dto import PaymentInitiation
from apps.orders.models import Order
from apps.utils.resilience import CircuitBreaker, CircuitOpenError

from .exceptions import InvalidSignature, PaymentGatewayError
from .models import Payment, PaymentMethod, PaymentStatus, WebhookEvent

logger = logging.getLogger(__name__)

CHANNELS_BY_METHOD = {
    PaymentMethod.MOMO_MTN: ["mobile_money"],
    PaymentMethod.MOMO_VODAFONE: ["mobile_money"],
    PaymentMethod.MOMO_AIRTELTIGO: ["mobile_money"],
    PaymentMethod.CARD: ["card"],
    PaymentMethod.BANK_TRANSFER: ["bank", "bank_transfer"],
}

paystack_breaker = CircuitBreaker("paystack", failure_threshold=5, recovery_timeout=60)


class PaystackClient:
    """
    Thin wrapper over the Paystack REST API.
    Raises PaymentGatewayError for transport failures and for ``status: false`` replies.
    """

    def __init__(self, secret_key=None, base_url=None, timeout=None, session=None, breaker=paystack_breaker):
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY
        self.base_url = (base_url or settings.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.PAYSTACK_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self._send = breaker(self._send_raw) if breaker else self._send_raw

    def initialize(self, *, email, amount, reference, currency, metadata, channels=None, callback_url=None):
        payload = {
            "email": email,
            "amount": amount,
            "reference": reference,
            "currency": currency,
            "metadata": metadata,
        }
        if channels:
            payload["channels"] = channels
        if callback_url:
            payload["callback_url"] = callback_url
        return self._request("POST", "/transaction/initialize", json=payload)

    def verify(self, reference):
        return self._request("GET", f"/transaction/verify/{requests.utils.quote(reference, safe='')}")

    def _request(self, method, path, **kwargs):
        try:
            response = self._send(method, path, **kwargs)
        except CircuitOpenError as e:
            raise PaymentGatewayError(str(e)) from e
        except requests.RequestException as e:
            logger.error(f"Paystack {method} {path} failed: {e}")
            raise PaymentGatewayError("Payment gateway is unreachable.") from e

        try:
            body = response.json()
        except ValueError as e:
            raise PaymentGatewayError(f"Unreadable gateway response (HTTP {response.status_code}).") from e

        if not isinstance(body, dict):
            logger.error(f"Paystack {method} {path} returned a non-object body: {body!r:.200}")
            raise PaymentGatewayError(f"Unexpected gateway response (HTTP {response.status_code}).")
        if not body.get("status"):
            logger.warning(f"Paystack rejected {method} {path}: {body.get('message')}")
            raise PaymentGatewayError(body.get("message") or "Payment gateway rejected the request.")
        return body.get("data") or {}

    def _send_raw(self, method, path, **kwargs):
        response = self.session.request(
            method,
            f"{self.base_url}{path}",
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
            **kwargs,
        )
        # Only 5xx counts against the breaker, 4xx is the caller's fault
        if response.status_code >= 500:
            response.raise_for_status()
        return response


def generate_payment_reference(order_number):
    return f"{order_number}-{uuid.uuid4().hex[:6].upper()}"


class PaymentGateway:
    """
    Starts and checks payments. Never called inside the order transaction.

    In sandbox mode nothing leaves the process: initiation returns a local
    authorization url and verification reports the stored amount as paid.
    """

    def __init__(self, client=None, sandbox=None, currency=None, callback_url=None):
        self.client = client or PaystackClient()
        self.sandbox = settings.PAYSTACK_SANDBOX if sandbox is None else sandbox
        self.currency = currency or settings.PAYMENT_CURRENCY
        self.callback_url = callback_url if callback_url is not None else settings.PAYSTACK_CALLBACK_URL

    def initiate(self, order: Order, payment: Payment) -> PaymentInitiation:
        if payment.is_cash:
            return PaymentInitiation(initialized=False, message="Pay with cash on delivery.")

        reference = generate_payment_reference(order.order_number)
        try:
            if self.sandbox:
                logger.info(f"[Paystack Sandbox] Initializing {reference} for {order.total_in_pesewas} pesewas")
                data = {
                    "authorization_url": f"{settings.FRONTEND_URL}/payment/verify?reference={reference}&demo=true",
                    "reference": reference,
                }
            else:
                data = self.client.initialize(
                    email=order.customer_email,
                    amount=order.total_in_pesewas,
                    reference=reference,
                    currency=self.currency,
                    metadata={"order_id": str(order.id), "order_number": order.order_number},
                    channels=CHANNELS_BY_METHOD.get(payment.method),
                    callback_url=self.callback_url,
                )
        except PaymentGatewayError as e:
            logger.error(
                f"Payment initialization failed for {order.order_number}: {e.message}",
                extra={"order_id": str(order.id), "order_number": order.order_number},
            )
            Payment.objects.filter(pk=payment.pk).update(error_message=e.message[:500])
            return PaymentInitiation(
                initialized=False,
                message="Order placed, but we could not start the payment. Please retry from your orders page.",
            )

        payment.external_reference = data.get("reference") or reference
        payment.authorization_url = data.get("authorization_url", "")
        payment.initiated_at = timezone.now()
        payment.error_message = ""
        payment.gateway_response = data
        payment.save(update_fields=[
            "external_reference", "authorization_url", "initiated_at",
            "error_message", "gateway_response", "updated_at",
        ])

        logger.info(
            f"Payment initialized: {payment.external_reference}",
            extra={"order_id": str(order.id), "reference": payment.external_reference},
        )
        return PaymentInitiation(
            initialized=True,
            reference=payment.external_reference,
            authorization_url=payment.authorization_url,
            message="Redirect to complete payment.",
        )

    def verify(self, reference) -> dict:
        if self.sandbox:
            payment = Payment.objects.filter(external_reference=reference).first()
            if payment is None:
                raise PaymentGatewayError("Transaction reference not found.")
            logger.info(f"[Paystack Sandbox] Verifying {reference}")
            return {
                "id": None,
                "status": "success",
                "reference": reference,
                "amount": payment.amount_in_pesewas,
                "currency": payment.currency,
                "gateway_response": "Successful",
            }
        return self.client.verify(reference)


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw_body, hashlib.sha512).hexdigest()


class WebhookReconciler:
    """
    Applies gateway callbacks to Payment/Order state. Replays are no-ops.
    """

    def __init__(self, order_service, secret_key=None):
        self.order_service = order_service
        self.secret_key = secret_key if secret_key is not None else settings.PAYSTACK_SECRET_KEY

    def verify_signature(self, raw_body: bytes, signature) -> None:
        if not self.secret_key or not signature:
            raise InvalidSignature()
        expected = compute_signature(raw_body, self.secret_key)
        if not hmac.compare_digest(expected, str(signature)):
            raise InvalidSignature()

    def handle(self, raw_body: bytes, signature) -> None:
        """
        Raises InvalidSignature; everything after the signature check is
        acknowledged and only logged on failure.
        """
        self.verify_signature(raw_body, signature)

        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.warning("Webhook body is not JSON, ignoring.")
            return
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            logger.warning("Webhook payload malformed, ignoring.")
            return

        event = payload.get("event") or ""
        data = payload["data"]
        ident = data.get("id") or data.get("reference")
        if not event or not ident:
            logger.warning(f"Webhook without event/id, ignoring: {event!r}")
            return

        event_key = f"{event}:{ident}"[:150]
        try:
            self._process(event_key, event, data, payload)
        except Exception as e:
            logger.exception(f"Webhook {event_key} failed", extra={"event_id": event_key})
            WebhookEvent.objects.filter(event_key=event_key, is_processed=False).update(error=str(e)[:1000])

    def _process(self, event_key, event, data, payload):
        # Recorded outside the processing transaction so failures stay visible
        record, _ = WebhookEvent.objects.get_or_create(
            event_key=event_key,
            defaults={"event_type": event, "payload": payload},
        )

        with transaction.atomic():
            record = WebhookEvent.objects.select_for_update().get(pk=record.pk)
            if record.is_processed:
                logger.info(f"Webhook {event_key} already processed, skipping.", extra={"event_id": event_key})
                return

            if event == "charge.success":
                self.apply_charge_success(data)
            else:
                logger.info(f"Webhook event {event} acknowledged without action.")

            record.is_processed = True
            record.error = ""
            record.save(update_fields=["is_processed", "error", "updated_at"])

    @staticmethod
    def _payment_from_metadata(metadata):
        # Paystack echoes metadata back as an object, or as a JSON string
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                return None
        if not isinstance(metadata, dict):
            return None
        try:
            order_id = uuid.UUID(str(metadata.get("order_id")))
        except ValueError:
            return None
        return (
            Payment.objects.select_for_update()
            .select_related("order")
            .filter(order_id=order_id)
            .first()
        )

    @transaction.atomic
    def apply_charge_success(self, data: dict) -> bool:
        """
        Payment -> SUCCESS, Order PAYMENT_PENDING -> PROCESSING.
        Returns False when nothing was applied.
        """
        reference = data.get("reference")
        if data.get("status") != "success" or not reference:
            logger.info(f"Charge for {reference} not successful ({data.get('status')}), nothing to apply.")
            return False

        payment = (
            Payment.objects.select_for_update()
            .select_related("order")
            .filter(external_reference=reference)
            .first()
        )
        if payment is None:
            # A retried initialize replaces external_reference; earlier
            # references are still matched through the order id in metadata.
            payment = self._payment_from_metadata(data.get("metadata"))
            if payment is None:
                logger.warning(f"No payment matches reference {reference}", extra={"reference": reference})
                return False
            logger.info(
                f"Reference {reference} superseded by {payment.external_reference}, matched by order id.",
                extra={"order_id": str(payment.order_id), "reference": reference},
            )

        log_extra = {"order_id": str(payment.order_id), "reference": reference}
        if payment.status == PaymentStatus.SUCCESS:
            logger.info(f"Payment {reference} already confirmed.", extra=log_extra)
            return False

        try:
            amount = int(data.get("amount"))
        except (TypeError, ValueError):
            amount = None
        if amount != payment.amount_in_pesewas:
            logger.error(
                f"Amount mismatch for {reference}: expected {payment.amount_in_pesewas}, got {data.get('amount')}",
                extra=log_extra,
            )
            return False

        now = timezone.now()
        payment.status = PaymentStatus.SUCCESS
        payment.confirmed_at = now
        payment.gateway_response = data
        payment.save(update_fields=["status", "confirmed_at", "gateway_response", "updated_at"])

        order = payment.order
        if order.status == Order.Status.PAYMENT_PENDING:
            self.order_service.mark_paid(order.id, note=f"Payment confirmed ({reference}).")
        else:
            # e.g. auto-cancelled just before the charge landed
            logger.error(
                f"Payment {reference} succeeded but order {order.order_number} is {order.status}. Refund required.",
                extra=log_extra,
            )

        logger.info(f"Payment {reference} confirmed.", extra=log_extra)
        return True
