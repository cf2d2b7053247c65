"""HTML bodies for transactional email. Every interpolated value is escaped."""
from __future__ import annotations

from html import escape

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
<style>
body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
.container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
.header {{ background: {accent}; color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }}
.content {{ background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px; }}
.details {{ background: white; padding: 20px; border-radius: 5px; margin: 20px 0; }}
.button {{ display: inline-block; background: #667eea; color: white; padding: 12px 30px; text-decoration: none; border-radius: 5px; }}
</style>
</head>
<body>
<div class="container">
<div class="header"><h1>{heading}</h1></div>
<div class="content">
{body}
</div>
</div>
</body>
</html>
"""

_PRIMARY = "#667eea"
_DANGER = "#e74c3c"
_SUCCESS = "#27ae60"


def _greeting(name: object) -> str:
    return f"<p>Hi {escape(str(name or 'there'))},</p>"


def _details(rows: list[tuple[str, object]]) -> str:
    lines = "".join(f"<p><strong>{escape(label)}:</strong> {escape(str(value))}</p>" for label, value in rows)
    return f'<div class="details">{lines}</div>'


def _render(*, heading: str, body: str, accent: str = _PRIMARY) -> str:
    return _LAYOUT.format(heading=escape(heading), body=body, accent=accent)


def _booking_rows(booking: dict[str, object]) -> list[tuple[str, object]]:
    return [
        ("Service", booking["serviceName"]),
        ("Date", booking["date"]),
        ("Location", booking.get("location") or "-"),
        ("Status", booking["status"]),
        ("Booking ID", booking["id"]),
    ]


def welcome_email(*, name: str | None, base_url: str) -> tuple[str, str]:
    body = (
        _greeting(name)
        + "<p>Thanks for joining Cadence. Your account is ready.</p>"
        + f'<a class="button" href="{escape(base_url)}/dashboard">Get started</a>'
    )
    return "Welcome to Cadence!", _render(heading="Welcome to Cadence!", body=body)


def account_deleted_email(*, name: str | None) -> tuple[str, str]:
    body = (
        _greeting(name)
        + "<p>Your account has been deleted. We are sorry to see you go.</p>"
        + "<p>If this was not you, contact support right away.</p>"
    )
    return "Account Deletion Confirmation", _render(heading="Account deleted", body=body, accent=_DANGER)


def booking_confirmed_email(*, name: str | None, booking: dict[str, object], base_url: str) -> tuple[str, str]:
    body = (
        _greeting(name)
        + "<p>Your booking has been confirmed. Here are the details:</p>"
        + _details(_booking_rows(booking))
        + f'<a class="button" href="{escape(base_url)}/bookings/{escape(str(booking["id"]))}">View booking</a>'
    )
    return f"Booking Confirmation - {booking['serviceName']}", _render(heading="Booking confirmed", body=body)


def booking_status_email(*, name: str | None, booking: dict[str, object], status: str) -> tuple[str, str]:
    body = (
        _greeting(name)
        + f"<p>Your booking for <strong>{escape(str(booking['serviceName']))}</strong> is now {escape(status.lower())}.</p>"
        + _details([("Booking ID", booking["id"]), ("Date", booking["date"])])
    )
    if status == "COMPLETED":
        body += "<p>Thank you for using our service. We would love to hear your feedback.</p>"
    return f"Booking {status} - {booking['serviceName']}", _render(heading="Booking status update", body=body)


def booking_cancelled_email(*, name: str | None, booking: dict[str, object], reason: str | None) -> tuple[str, str]:
    rows = [("Service", booking["serviceName"]), ("Date", booking["date"]), ("Booking ID", booking["id"])]
    if reason:
        rows.append(("Reason", reason))
    body = (
        _greeting(name)
        + "<p>Your booking has been cancelled.</p>"
        + _details(rows)
        + "<p>If you have any questions, please contact our support team.</p>"
    )
    return f"Booking Cancelled - {booking['serviceName']}", _render(heading="Booking cancelled", body=body, accent=_DANGER)


def payment_receipt_email(
    *,
    name: str | None,
    amount: float,
    payment_id: str | None,
    booking: dict[str, object] | None,
) -> tuple[str, str]:
    rows: list[tuple[str, object]] = [("Amount", f"${amount:.2f}"), ("Payment ID", payment_id or "-")]
    if booking is not None:
        rows += [("Service", booking["serviceName"]), ("Date", booking["date"])]
    body = _greeting(name) + "<p>Your payment was processed successfully.</p>" + _details(rows)
    return "Payment Successful - Receipt", _render(heading="Payment successful", body=body, accent=_SUCCESS)


def payment_failed_email(
    *,
    name: str | None,
    amount: float,
    reason: str | None,
    booking: dict[str, object] | None,
    base_url: str,
) -> tuple[str, str]:
    rows: list[tuple[str, object]] = [("Amount", f"${amount:.2f}"), ("Reason", reason or "Unknown")]
    if booking is not None:
        rows.append(("Service", booking["serviceName"]))
    body = (
        _greeting(name)
        + "<p>We could not process your payment.</p>"
        + _details(rows)
        + f'<a class="button" href="{escape(base_url)}/payments">Retry payment</a>'
    )
    return "Payment Failed - Action Required", _render(heading="Payment failed", body=body, accent=_DANGER)
