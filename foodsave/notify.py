"""
Order notifications.

When a reservation is paid the customer gets a confirmation and the operator
gets the full order. Mails go out through the Resend HTTP API as detached
asyncio tasks: the webhook that triggered them never waits for delivery and
never sees a delivery failure. There are no retries; failures are logged.
"""
from __future__ import annotations
import asyncio
from typing import Any, Coroutine, List, Optional, Set

import httpx
from jinja2 import Environment, DictLoader, select_autoescape

from .config import Settings
from .helpers import format_euro
from .logs import get_logger
from .model.types import Reservation

logger = get_logger("notify")

RESEND_API_URL = "https://api.resend.com/emails"

CUSTOMER_SUBJECT = "FoodSave - order confirmation"
OPERATOR_SUBJECT = "FoodSave - new order"


TEMPLATES = {
    "order_summary.html": """
<table style="width:100%; border-collapse:collapse; font-size:14px; color:#1f2a24;">
  {% for item in r.items %}
  <tr><td style="padding:6px 0; color:#5c6b63;">{{ item.package_name }}</td>
      <td style="padding:6px 0; font-weight:700; text-align:right;">{{ item.quantity }}×</td></tr>
  {% else %}
  <tr><td style="padding:6px 0; color:#5c6b63;">Packages</td>
      <td style="padding:6px 0; font-weight:700; text-align:right;">-</td></tr>
  {% endfor %}
  <tr><td style="padding:6px 0; color:#5c6b63;">Date</td>
      <td style="padding:6px 0; font-weight:700; text-align:right;">{{ r.pickup_date }}</td></tr>
  <tr><td style="padding:6px 0; color:#5c6b63;">Time</td>
      <td style="padding:6px 0; font-weight:700; text-align:right;">{{ r.pickup_time }}</td></tr>
  <tr><td style="padding:6px 0; color:#5c6b63;">Total</td>
      <td style="padding:6px 0; font-weight:700; text-align:right;">{{ total }}</td></tr>
</table>
""",
    "customer_confirmation.html": """
<div style="font-family:Arial, sans-serif; background:#f5faf6; padding:24px;">
  <div style="max-width:560px;margin:0 auto;background:#ffffff;border-radius:18px;padding:22px 24px;text-align:center;">
    {% if logo_url %}
    <img src="{{ logo_url }}" alt="FoodSave" style="height:44px; margin-bottom:16px;" />
    {% else %}
    <h2 style="margin:0 0 8px; color:#1f2a24;">FoodSave</h2>
    {% endif %}
    <h2 style="margin:6px 0 8px;color:#1f2a24;">Thank you for your order!</h2>
    <p style="margin:0 0 12px;color:#2f3b35;font-size:15px;">
      Thanks to you this food will not end up in the bin.
    </p>
    <div style="background:#f7fff9;border-radius:12px;padding:14px 16px;margin:14px 0;text-align:left;">
      {% include "order_summary.html" %}
    </div>
    <a href="{{ base_url }}/" style="display:inline-block;background:#38b56a;color:#fff;text-decoration:none;padding:10px 18px;border-radius:999px;font-weight:700;">
      Back to FoodSave
    </a>
  </div>
</div>
""",
    "operator_notification.html": """
<div style="font-family:Arial, sans-serif; background:#ffffff; padding:20px;">
  <h2 style="margin:0 0 10px;color:#1f2a24;">New order</h2>
  <p style="margin:0 0 8px;color:#2f3b35;"><strong>Customer:</strong> {{ r.customer_name }} ({{ r.email }})</p>
  <p style="margin:0 0 8px;color:#2f3b35;"><strong>Phone:</strong> {{ r.phone }}</p>
  <p style="margin:0 0 8px;color:#2f3b35;"><strong>Address:</strong> {{ r.address }}</p>
  <p style="margin:0 0 8px;color:#2f3b35;"><strong>Pickup:</strong> {{ r.pickup_date }} {{ r.pickup_time }}</p>
  <p style="margin:0 0 8px;color:#2f3b35;"><strong>Packages:</strong> {{ items_list or "-" }}</p>
  <p style="margin:0 0 8px;color:#2f3b35;"><strong>Total:</strong> {{ total }}</p>
  {% if r.special_requests %}
  <p style="margin:12px 0 0;color:#2f3b35;"><strong>Special requests:</strong> {{ r.special_requests }}</p>
  {% endif %}
</div>
""",
}

env = Environment(
    loader=DictLoader(TEMPLATES), autoescape=select_autoescape(["html"])
)


def items_list(reservation: Reservation) -> str:
    return ", ".join(
        f"{i.package_name} × {i.quantity}" for i in reservation.items
    )


class NotificationDispatcher:
    def __init__(
        self,
        *,
        http: Optional[httpx.AsyncClient],
        api_key: str = "",
        from_email: str = "",
        admin_email: str = "",
        base_url: str = "",
        logo_url: str = "",
        api_url: str = RESEND_API_URL,
    ) -> None:
        self.http = http
        self.api_key = api_key
        self.from_email = from_email
        self.admin_email = admin_email
        self.base_url = base_url.rstrip("/")
        self.logo_url = logo_url
        self.api_url = api_url
        self._tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls, settings: Settings, http: Optional[httpx.AsyncClient]
    ) -> NotificationDispatcher:
        return cls(
            http=http,
            api_key=settings.resend_api_key,
            from_email=settings.resend_from_email,
            admin_email=settings.admin_email,
            base_url=settings.base_url,
            logo_url=settings.public_logo_url,
        )

    @property
    def enabled(self) -> bool:
        return bool(self.http is not None and self.api_key and self.from_email)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ---- rendering
    def render_customer_confirmation(self, reservation: Reservation) -> str:
        return env.get_template("customer_confirmation.html").render(
            r=reservation,
            total=format_euro(reservation.total_cents),
            logo_url=self.logo_url,
            base_url=self.base_url,
        )

    def render_operator_notification(self, reservation: Reservation) -> str:
        return env.get_template("operator_notification.html").render(
            r=reservation,
            total=format_euro(reservation.total_cents),
            items_list=items_list(reservation),
        )

    # ---- dispatch
    def reservation_paid(self, reservation: Reservation) -> List[asyncio.Task]:
        """Fire-and-forget both mails for a freshly paid reservation."""
        if not self.enabled:
            logger.info("notification_skipped", reason="mail_not_configured",
                        reservation_id=reservation.id)
            return []

        tasks = []
        if reservation.email:
            tasks.append(self._spawn(
                "customer", reservation.id, reservation.email,
                CUSTOMER_SUBJECT,
                self.render_customer_confirmation(reservation),
            ))
        if self.admin_email:
            tasks.append(self._spawn(
                "operator", reservation.id, self.admin_email,
                OPERATOR_SUBJECT,
                self.render_operator_notification(reservation),
            ))
        return tasks

    def _spawn(self, kind: str, reservation_id: str, to: str, subject: str,
               html: str) -> asyncio.Task:
        coro = self._deliver(kind, reservation_id, to, subject, html)
        return self._track(coro)

    def _track(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        # keep a strong reference until the task is done
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(self, kind: str, reservation_id: str, to: str,
                       subject: str, html: str) -> None:
        try:
            await self.send_email(to=to, subject=subject, html=html)
        except Exception as e:
            logger.warning("notification_failed", kind=kind,
                           reservation_id=reservation_id, error=repr(e))
            return
        logger.info("notification_sent", kind=kind,
                    reservation_id=reservation_id)

    async def send_email(self, *, to: str, subject: str, html: str) -> None:
        r = await self.http.post(
            self.api_url,
            json={
                "from": self.from_email,
                "to": [to],
                "subject": subject,
                "html": html,
            },
            headers={"authorization": f"Bearer {self.api_key}"},
        )
        r.raise_for_status()

    async def aclose(self) -> None:
        """Wait for in-flight deliveries (used on shutdown and in tests)."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
