# core/emails.py

import logging

from django.conf import settings
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Content, Email, Mail, To

logger = logging.getLogger(__name__)


class EmailNotConfigured(RuntimeError):
    pass


def send_html_email(to_email: str, subject: str, html_content: str, plain_content: str) -> str:
    """
    Send an HTML email via the SendGrid HTTP API.

    Returns the SendGrid message id (may be empty when the API omits it).
    Raises EmailNotConfigured without an API key and RuntimeError on a
    non-2xx response; transport errors from the client propagate.
    """
    api_key = getattr(settings, "SENDGRID_API_KEY", "")
    if not api_key:
        raise EmailNotConfigured("SENDGRID_API_KEY not configured")

    from_email = getattr(settings, "DEFAULT_FROM_EMAIL", "notifications@cleanswift.app")

    mail = Mail(
        from_email=Email(from_email, "CleanSwift"),
        to_emails=To(to_email),
        subject=subject,
    )
    mail.add_content(Content("text/plain", plain_content))
    mail.add_content(Content("text/html", html_content))

    response = SendGridAPIClient(api_key).send(mail)
    if response.status_code not in (200, 201, 202):
        raise RuntimeError(f"SendGrid returned HTTP {response.status_code}")

    message_id = response.headers.get("X-Message-Id", "") if response.headers else ""
    logger.info(f"Email sent to {to_email}, status: {response.status_code}")
    return message_id or ""


def _format_dollars(amount_cents) -> str:
    return f"${int(amount_cents or 0) / 100:.2f}"


def _detail_rows(rows) -> str:
    return "".join(
        f'<p style="margin: 5px 0; color: #333;"><strong>{label}:</strong> {value}</p>'
        for label, value in rows
        if value
    )


def _wrap(title: str, title_color: str, detailer_name: str, intro: str, body: str,
          outro: str, button_url: str, button_label: str) -> str:
    return f"""
    <div style="max-width: 600px; margin: 0 auto; font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; background: #ffffff; border-radius: 12px; overflow: hidden;">
        <div style="background: linear-gradient(135deg, #0A1A2F 0%, #1a3a5c 100%); padding: 30px; text-align: center;">
            <h1 style="color: {title_color}; margin: 0; font-size: 24px;">{title}</h1>
        </div>
        <div style="padding: 30px;">
            <p style="color: #333; font-size: 16px;">Hi {detailer_name},</p>
            <p style="color: #333; font-size: 16px;">{intro}</p>
            <div style="background: #f5f7fa; padding: 20px; border-radius: 8px; margin: 20px 0;">
                {body}
            </div>
            <p style="color: #333; font-size: 16px;">{outro}</p>
            <div style="text-align: center;">
                <a href="{button_url}" style="display: inline-block; background: #32CE7A; color: #0A1A2F; padding: 14px 28px; text-decoration: none; border-radius: 8px; font-weight: bold;">{button_label}</a>
            </div>
        </div>
        <div style="background: #f5f7fa; padding: 20px; text-align: center;">
            <p style="color: #666; font-size: 12px; margin: 0;">CleanSwift - Mobile Auto Detailing</p>
        </div>
    </div>
    """


def build_detailer_email(notification_type: str, data: dict, detailer_name: str):
    """
    Returns (subject, html_content, plain_content) for a detailer notification.
    """
    base_url = getattr(settings, "SITE_URL", "https://cleanswift.app").rstrip("/")
    service = data.get("service_name", "")
    date = data.get("scheduled_date", "")
    time = data.get("scheduled_time", "")
    city = data.get("location_city", "")

    if notification_type == "new_booking":
        subject = f"New Job Offer: {service} on {date}"
        rows = [("Service", service), ("Date", date), ("Time", time),
                ("Location", city), ("Customer", data.get("customer_name"))]
        html = _wrap(
            "New Job Offered!", "#32CE7A", detailer_name,
            "A new job has been offered to you!", _detail_rows(rows),
            "Please accept or decline this job as soon as possible.",
            f"{base_url}/detailer/pending", "View Job Details",
        )
        plain = (
            f"Hi {detailer_name},\n\nA new job has been offered to you: {service} on {date} "
            f"at {time} in {city}.\n\nOpen the app to accept it."
        )

    elif notification_type == "booking_cancelled":
        subject = f"Booking Cancelled: {service} on {date}"
        rows = [("Service", service), ("Date", date), ("Time", time), ("Location", city)]
        html = _wrap(
            "Booking Cancelled", "#ef4444", detailer_name,
            "A booking has been cancelled by the customer.", _detail_rows(rows),
            "This time slot is now available for other bookings.",
            f"{base_url}/detailer/schedule", "View Schedule",
        )
        plain = (
            f"Hi {detailer_name},\n\n{service} on {date} at {time} has been cancelled. "
            "This time slot is now available for other bookings."
        )

    elif notification_type == "booking_reminder":
        subject = f"Reminder: {service} Tomorrow at {time}"
        location = data.get("location_address") or city
        rows = [("Service", service), ("Date", date), ("Time", time),
                ("Location", location), ("Customer", data.get("customer_name"))]
        html = _wrap(
            "Upcoming Job Reminder", "#32CE7A", detailer_name,
            "This is a reminder about your upcoming job tomorrow.", _detail_rows(rows),
            "Make sure to arrive on time and contact the customer if needed.",
            f"{base_url}/detailer/bookings/{data.get('booking_id', '')}", "View Booking Details",
        )
        plain = (
            f"Hi {detailer_name},\n\nReminder: {service} tomorrow at {time} at {location}."
        )

    elif notification_type == "payout_processed":
        amount = _format_dollars(data.get("amount"))
        jobs = int(data.get("total_jobs") or 0)
        subject = f"Payout Processed: {amount}"
        body = (
            f'<p style="margin: 0; color: #32CE7A; font-size: 36px; font-weight: bold;">{amount}</p>'
            f'<p style="margin: 10px 0 0 0; color: #666;">Week of {data.get("week_start", "")} - {data.get("week_end", "")}</p>'
            f'<p style="margin: 5px 0 0 0; color: #666;">{jobs} completed job{"" if jobs == 1 else "s"}</p>'
        )
        html = _wrap(
            "Payout Processed!", "#32CE7A", detailer_name,
            "Great news! Your weekly payout has been processed.", body,
            "The funds should arrive in your connected bank account within 2-3 business days.",
            f"{base_url}/detailer/earnings", "View Earnings",
        )
        plain = (
            f"Hi {detailer_name},\n\nYour weekly payout of {amount} for "
            f"{data.get('week_start', '')} - {data.get('week_end', '')} ({jobs} jobs) has been processed."
        )

    else:
        subject = "Notification from CleanSwift"
        html = _wrap(
            "CleanSwift Notification", "#32CE7A", detailer_name,
            "You have a new notification.", "",
            "Please check the app for details.",
            f"{base_url}/detailer/dashboard", "Open Dashboard",
        )
        plain = f"Hi {detailer_name},\n\nYou have a new notification. Please check the app for details."

    return subject, html, plain
