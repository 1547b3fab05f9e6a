from __future__ import annotations

from html import escape

from directory_api.services.email import EmailMessage

_FOOTER_TEXT = "FindConstructionStaffing - connecting contractors with staffing agencies."


def _greeting(recipient_name: str | None) -> str:
    return f"Hi {recipient_name}," if recipient_name else "Hello,"


def _wrap_html(title: str, body_html: str, site_url: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family: Arial, sans-serif; color: #111827;\">"
        f"<h1 style=\"font-size: 22px;\">{escape(title)}</h1>"
        f"{body_html}"
        "<hr style=\"border: none; border-top: 1px solid #e5e7eb;\">"
        f"<p style=\"font-size: 12px; color: #6b7280;\">{escape(_FOOTER_TEXT)} "
        f"<a href=\"{escape(site_url)}\">Visit our website</a></p>"
        "</body></html>"
    )


def claim_confirmation_email(
    *,
    recipient_email: str,
    recipient_name: str | None,
    agency_name: str,
    site_url: str,
) -> EmailMessage:
    status_url = f"{site_url}/settings/claims"
    html = _wrap_html(
        "Claim Request Received",
        f"<p>{escape(_greeting(recipient_name))}</p>"
        f"<p>We received your request to claim <strong>{escape(agency_name)}</strong>. "
        "Our team reviews claim requests within 2 business days.</p>"
        f"<p><a href=\"{escape(status_url)}\">Check your request status</a></p>",
        site_url,
    )
    text = (
        f"{_greeting(recipient_name)}\n\n"
        f"We received your request to claim {agency_name}. "
        "Our team reviews claim requests within 2 business days.\n\n"
        f"Check your request status: {status_url}\n\n{_FOOTER_TEXT}\n"
    )
    return EmailMessage(
        to=recipient_email,
        subject=f"Claim Request Submitted for {agency_name}",
        html=html,
        text=text,
    )


def claim_approved_email(
    *,
    recipient_email: str,
    recipient_name: str | None,
    agency_name: str,
    agency_slug: str,
    site_url: str,
) -> EmailMessage:
    dashboard_url = f"{site_url}/dashboard/agency/{agency_slug}"
    html = _wrap_html(
        "Your Claim Has Been Approved",
        f"<p>{escape(_greeting(recipient_name))}</p>"
        f"<p>Congratulations! Your claim for <strong>{escape(agency_name)}</strong> has been approved. "
        "You can now manage your agency profile, trades and service regions.</p>"
        f"<p><a href=\"{escape(dashboard_url)}\">Get Started</a></p>"
        "<ol><li>Visit your agency dashboard using the link above</li>"
        "<li>Complete your agency profile</li>"
        "<li>Select the trades and regions you serve</li></ol>",
        site_url,
    )
    text = (
        f"{_greeting(recipient_name)}\n\n"
        f"Congratulations! Your claim for {agency_name} has been approved.\n\n"
        f"Get Started: {dashboard_url}\n\n"
        "1. Visit your agency dashboard using the link above\n"
        "2. Complete your agency profile\n"
        "3. Select the trades and regions you serve\n\n"
        f"{_FOOTER_TEXT}\n"
    )
    return EmailMessage(to=recipient_email, subject=f"Claim Approved - {agency_name}", html=html, text=text)


def claim_rejected_email(
    *,
    recipient_email: str,
    recipient_name: str | None,
    agency_name: str,
    agency_slug: str,
    rejection_reason: str,
    site_url: str,
) -> EmailMessage:
    resubmit_url = f"{site_url}/claim/{agency_slug}"
    html = _wrap_html(
        "Update on Your Claim Request",
        f"<p>{escape(_greeting(recipient_name))}</p>"
        f"<p>We were unable to approve your claim for <strong>{escape(agency_name)}</strong>.</p>"
        f"<blockquote>{escape(rejection_reason)}</blockquote>"
        "<p>If you can address the reason above, you are welcome to submit a new request.</p>"
        f"<p><a href=\"{escape(resubmit_url)}\">Resubmit Claim Request</a></p>",
        site_url,
    )
    text = (
        f"{_greeting(recipient_name)}\n\n"
        f"We were unable to approve your claim for {agency_name}.\n\n"
        f"Reason: {rejection_reason}\n\n"
        f"Resubmit Claim Request: {resubmit_url}\n\n{_FOOTER_TEXT}\n"
    )
    return EmailMessage(to=recipient_email, subject=f"Claim Request Update - {agency_name}", html=html, text=text)


def new_message_email(
    *,
    recipient_email: str,
    recipient_name: str | None,
    sender_name: str,
    message_preview: str,
    conversation_id: str,
    site_url: str,
) -> EmailMessage:
    conversation_url = f"{site_url}/messages/conversations/{conversation_id}"
    preview = message_preview if len(message_preview) <= 200 else f"{message_preview[:200]}..."
    html = _wrap_html(
        "You Have a New Message",
        f"<p>{escape(_greeting(recipient_name))}</p>"
        f"<p><strong>{escape(sender_name)}</strong> sent you a message:</p>"
        f"<blockquote>{escape(preview)}</blockquote>"
        f"<p><a href=\"{escape(conversation_url)}\">View Message</a></p>",
        site_url,
    )
    text = (
        f"{_greeting(recipient_name)}\n\n"
        f"{sender_name} sent you a message:\n\n{preview}\n\n"
        f"View message: {conversation_url}\n\n{_FOOTER_TEXT}\n"
    )
    return EmailMessage(to=recipient_email, subject=f"New message from {sender_name}", html=html, text=text)
