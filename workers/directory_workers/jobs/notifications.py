from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from html import escape
import logging
from typing import Any, Protocol

from directory_workers.services.email import EmailDeliveryError

logger = logging.getLogger(__name__)

NO_EMAIL_ADDRESS = "no_email_address"


class NotificationClient(Protocol):
    async def submit_result(
        self, notification_id: str, *, status: str, delivery_error: str | None = None
    ) -> dict[str, Any]: ...


class EmailSender(Protocol):
    async def send(self, *, to: str, subject: str, html: str, text: str) -> str | None: ...


@dataclass(slots=True)
class NotificationGroup:
    labor_request_id: str
    agency_id: str
    agency: dict[str, Any]
    labor_request: dict[str, Any]
    notification_ids: list[str] = field(default_factory=list)
    crafts: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class DispatchSummary:
    sent: int = 0
    failed: int = 0


def group_notifications(notifications: list[dict[str, Any]]) -> list[NotificationGroup]:
    """Collapse per-craft notifications into one group per (labor request, agency), keeping first-seen order."""
    groups: dict[tuple[str, str], NotificationGroup] = {}
    for item in notifications:
        key = (item["labor_request_id"], item["agency_id"])
        group = groups.get(key)
        if group is None:
            group = NotificationGroup(
                labor_request_id=item["labor_request_id"],
                agency_id=item["agency_id"],
                agency=item.get("agency") or {},
                labor_request=item.get("labor_request") or {},
            )
            groups[key] = group
        group.notification_ids.append(item["id"])
        group.crafts.append(item.get("craft") or {})
    return list(groups.values())


def _format_date(value: str | None) -> str:
    if not value:
        return "TBD"
    try:
        parsed = date.fromisoformat(value)
    except ValueError:
        return value
    return f"{parsed:%B} {parsed.day}, {parsed.year}"


def _pay_rate(craft: dict[str, Any]) -> str:
    low, high = craft.get("pay_rate_min"), craft.get("pay_rate_max")
    if low and high:
        return f"${low:g}-${high:g}/hr"
    if low:
        return f"${low:g}+/hr"
    return "Rate negotiable"


def _craft_title(craft: dict[str, Any]) -> str:
    count = int(craft.get("worker_count") or 0)
    suffix = "s" if count > 1 else ""
    return f"{count} {craft.get('trade_name', 'Worker')}{suffix}"


def _craft_lines(craft: dict[str, Any]) -> list[tuple[str, str]]:
    lines = [
        ("Experience Level", str(craft.get("experience_level", ""))),
        ("Location", str(craft.get("region_name", ""))),
        ("Start Date", _format_date(craft.get("start_date"))),
        ("Duration", f"{craft.get('duration_days')} days ({craft.get('hours_per_week')} hours/week)"),
        ("Pay Rate", _pay_rate(craft)),
    ]
    if craft.get("per_diem_rate"):
        lines.append(("Per Diem", f"${craft['per_diem_rate']:g}/day per diem"))
    return lines


def build_notification_email(group: NotificationGroup, *, site_url: str) -> tuple[str, str, str]:
    """Return (subject, html, text) for one agency's consolidated notification."""
    request = group.labor_request
    project_name = request.get("project_name", "")
    company_name = request.get("company_name", "")
    craft_count = len(group.crafts)
    total_workers = sum(int(craft.get("worker_count") or 0) for craft in group.crafts)
    subject = f"New Labor Request: {project_name}"
    if craft_count > 1:
        subject = f"{subject} ({craft_count} crafts)"

    base_url = site_url.rstrip("/")
    request_url = f"{base_url}/dashboard/labor-requests/{group.labor_request_id}"
    worker_noun = "worker" if total_workers == 1 else "workers"
    craft_noun = "craft" if craft_count == 1 else "crafts"
    intro = (
        f"You've been matched to a new labor request from {company_name} requiring "
        f"{total_workers} {worker_noun} across {craft_count} {craft_noun}."
    )

    contact_rows = [
        ("Company", company_name),
        ("Contact", request.get("contact_email") or ""),
        ("Phone", request.get("contact_phone") or ""),
    ]

    html_parts = [
        f"<h2>New Labor Request: {escape(project_name)}</h2>",
        f"<p>Hi {escape(group.agency.get('name') or 'there')},</p>",
        f"<p>{escape(intro)}</p>",
        "<h3>Project Details</h3>",
    ]
    html_parts.extend(f"<p><strong>{label}:</strong> {escape(value)}</p>" for label, value in contact_rows)
    if request.get("additional_details"):
        html_parts.append(
            f"<p><strong>Additional Details:</strong><br>{escape(request['additional_details'])}</p>"
        )
    html_parts.append("<h3>Craft Requirements</h3>")

    text_lines = [
        f"New Labor Request: {project_name}",
        "",
        f"Hi {group.agency.get('name') or 'there'},",
        "",
        intro,
        "",
        "PROJECT DETAILS",
    ]
    text_lines.extend(f"{label}: {value}" for label, value in contact_rows)
    if request.get("additional_details"):
        text_lines.append(f"Additional Details: {request['additional_details']}")
    text_lines.extend(["", "CRAFT REQUIREMENTS"])

    for index, craft in enumerate(group.crafts, start=1):
        details = _craft_lines(craft)
        html_parts.append(f"<h4>{escape(_craft_title(craft))}</h4>")
        html_parts.extend(f"<p><strong>{label}:</strong> {escape(value)}</p>" for label, value in details)
        text_lines.append(f"{index}. {_craft_title(craft)}")
        text_lines.extend(f"   {label}: {value}" for label, value in details)
        if craft.get("notes"):
            html_parts.append(f'<p><em>"{escape(craft["notes"])}"</em></p>')
            text_lines.append(f"   Notes: {craft['notes']}")

    html_parts.append(f'<p><a href="{escape(request_url)}">View Full Request &amp; Respond</a></p>')
    html_parts.append("<p>Thank you,<br>The FindConstructionStaffing Team</p>")
    text_lines.extend(["", f"View full request and respond: {request_url}", "", "The FindConstructionStaffing Team"])

    return subject, "\n".join(html_parts), "\n".join(text_lines)


async def _report(
    client: NotificationClient,
    group: NotificationGroup,
    *,
    status: str,
    delivery_error: str | None = None,
) -> None:
    for notification_id in group.notification_ids:
        await client.submit_result(notification_id, status=status, delivery_error=delivery_error)


async def dispatch_notifications(
    notifications: list[dict[str, Any]],
    *,
    client: NotificationClient,
    sender: EmailSender,
    site_url: str,
) -> DispatchSummary:
    summary = DispatchSummary()
    for group in group_notifications(notifications):
        email = (group.agency.get("email") or "").strip()
        if not email:
            logger.warning(
                "agency has no email; marking notifications failed agency_id=%s labor_request_id=%s",
                group.agency_id,
                group.labor_request_id,
            )
            await _report(client, group, status="failed", delivery_error=NO_EMAIL_ADDRESS)
            summary.failed += len(group.notification_ids)
            continue

        subject, html, text = build_notification_email(group, site_url=site_url)
        try:
            await sender.send(to=email, subject=subject, html=html, text=text)
        except EmailDeliveryError as exc:
            logger.error(
                "labor request email failed agency_id=%s labor_request_id=%s reason=%s: %s",
                group.agency_id,
                group.labor_request_id,
                exc.reason,
                exc,
            )
            await _report(client, group, status="failed", delivery_error=exc.reason)
            summary.failed += len(group.notification_ids)
            continue

        logger.info(
            "labor request email sent agency_id=%s labor_request_id=%s crafts=%s",
            group.agency_id,
            group.labor_request_id,
            len(group.crafts),
        )
        await _report(client, group, status="sent")
        summary.sent += len(group.notification_ids)
    return summary
