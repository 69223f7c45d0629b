"""
Email templates used by the notification queue.

Each template renders a variables dict into subject, HTML and plain text.
"""
from dataclasses import dataclass
from html import escape
from typing import Any, Callable, Dict, List


@dataclass
class RenderedEmail:
    subject: str
    html: str
    text: str


def _wrap_html(title: str, body_html: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>{escape(title)}</h2>{body_html}"
        '<hr style="margin: 30px 0;">'
        '<p style="font-size: 12px; color: #666;">FlightClaims</p>'
        "</div>"
    )


def _paragraphs(text: str) -> str:
    return "".join(f"<p>{escape(p)}</p>" for p in text.strip().split("\n\n") if p.strip())


def render_claim_filed(v: Dict[str, Any]) -> RenderedEmail:
    subject = f"Your claim {v['claim_id']} has been filed with {v['airline']}"
    text = (
        f"Hi {v.get('first_name') or 'there'},\n\n"
        f"We have filed your compensation claim {v['claim_id']} for flight "
        f"{v.get('flight_number', '')} with {v['airline']} via {v.get('filing_method', 'their claims channel')}.\n\n"
        f"Airline reference: {v.get('airline_reference') or 'pending'}\n\n"
        "We will monitor the claim and follow up with the airline if it does not respond."
    )
    return RenderedEmail(subject, _wrap_html("Claim filed", _paragraphs(text)), text)


def render_refund_notification(v: Dict[str, Any]) -> RenderedEmail:
    amount = v.get("amount_display") or v.get("amount", "")
    subject = f"Refund issued for claim {v['claim_id']}"
    text = (
        f"Hi {v.get('first_name') or 'there'},\n\n"
        f"We have refunded your service fee of {amount} for claim {v['claim_id']}.\n\n"
        f"Reason: {v.get('refund_reason', '')}\n\n"
        "The refund usually appears on your statement within 5-10 business days."
    )
    return RenderedEmail(subject, _wrap_html("Refund issued", _paragraphs(text)), text)


def render_status_update(v: Dict[str, Any]) -> RenderedEmail:
    subject = f"Update on your claim {v['claim_id']}"
    steps: List[str] = v.get("next_steps") or []
    text = (
        f"Hi {v.get('first_name') or 'there'},\n\n"
        f"{v.get('update_message', 'There is an update on your claim.')}\n\n"
        + "\n".join(f"- {step}" for step in steps)
    )
    html = _paragraphs(v.get("update_message", "There is an update on your claim."))
    if steps:
        html += "<ul>" + "".join(f"<li>{escape(s)}</li>" for s in steps) + "</ul>"
    return RenderedEmail(subject, _wrap_html("Claim update", html), text.strip())


def _claim_lines(claims: List[Dict[str, Any]]) -> List[str]:
    return [
        f"{c.get('claim_id')} - {c.get('first_name', '')} {c.get('last_name', '')} | "
        f"Flight {c.get('flight_number', '')} {c.get('departure_date', '')} | "
        f"Status: {c.get('status', '')}"
        for c in claims
    ]


def render_admin_overdue_alert(v: Dict[str, Any]) -> RenderedEmail:
    claims = v.get("claims", [])
    subject = f"Overdue: {len(claims)} claim(s) past the filing deadline"
    lines = _claim_lines(claims)
    text = (
        f"{len(claims)} claim(s) have not been filed within {v.get('deadline_days', '')} day(s).\n\n"
        + "\n".join(lines)
    )
    html = (
        f"<p>{len(claims)} claim(s) have not been filed within {escape(str(v.get('deadline_days', '')))} day(s).</p>"
        "<ul>" + "".join(f"<li>{escape(line)}</li>" for line in lines) + "</ul>"
    )
    return RenderedEmail(subject, _wrap_html("Overdue claims", html), text)


def render_admin_follow_up_alert(v: Dict[str, Any]) -> RenderedEmail:
    by_airline: Dict[str, List[Dict[str, Any]]] = v.get("claims_by_airline", {})
    total = v.get("total_claims", sum(len(c) for c in by_airline.values()))
    subject = f"Follow-up Required: {total} claim(s) need attention"
    text_parts = [f"You have {total} claim(s) that need follow-up with airlines."]
    html_parts = [f"<p>You have {total} claim(s) that need follow-up with airlines.</p>"]
    for airline, claims in sorted(by_airline.items()):
        lines = _claim_lines(claims)
        text_parts.append(f"{airline} ({len(claims)} claims):\n" + "\n".join(f"- {line}" for line in lines))
        html_parts.append(
            f"<h3>{escape(airline)} ({len(claims)} claims)</h3><ul>"
            + "".join(f"<li>{escape(line)}</li>" for line in lines)
            + "</ul>"
        )
    return RenderedEmail(subject, _wrap_html("Follow-up Required", "".join(html_parts)), "\n\n".join(text_parts))


_FOLLOW_UP_OPENERS = {
    "initial": "I am following up on the EU261 compensation claim submitted on behalf of our client.",
    "reminder": "This is a reminder regarding the EU261 compensation claim for our client.",
    "escalation": (
        "We are escalating this EU261 compensation claim due to lack of response. "
        "We will refer the matter to the national enforcement body if we do not hear back within 7 days."
    ),
    "final": (
        "This is our final notice regarding the EU261 compensation claim for our client. "
        "Please respond within 48 hours before we proceed with regulatory action."
    ),
}


def render_airline_follow_up(v: Dict[str, Any]) -> RenderedEmail:
    follow_up_type = v.get("follow_up_type", "reminder")
    title = {
        "initial": "Initial Follow-up",
        "reminder": "Reminder",
        "escalation": "Escalation Required",
        "final": "Final Notice",
    }.get(follow_up_type, "Follow-up")
    subject = f"Follow-up: EU261 Compensation Claim - Flight {v.get('flight_number', '')} - {title}"
    text = (
        f"Dear {v.get('airline_name', v.get('airline', ''))} Customer Service,\n\n"
        f"{_FOLLOW_UP_OPENERS.get(follow_up_type, _FOLLOW_UP_OPENERS['reminder'])}\n\n"
        f"Claim ID: {v.get('claim_id')}\n"
        f"Flight: {v.get('flight_number', '')} on {v.get('departure_date', '')}\n"
        f"Airline reference: {v.get('airline_reference') or 'Not provided'}\n"
        f"Passenger: {v.get('passenger_name', '')}\n"
        f"Days since filing: {v.get('days_since_filing', '')}\n\n"
        "Best regards,\nFlightClaims Support Team"
    )
    return RenderedEmail(subject, _wrap_html("EU261 Compensation Claim", _paragraphs(text)), text)


EMAIL_TEMPLATES: Dict[str, Callable[[Dict[str, Any]], RenderedEmail]] = {
    "claim_filed": render_claim_filed,
    "refund_notification": render_refund_notification,
    "status_update": render_status_update,
    "admin_overdue_alert": render_admin_overdue_alert,
    "admin_follow_up_alert": render_admin_follow_up_alert,
    "airline_follow_up": render_airline_follow_up,
}


def render_template(name: str, variables: Dict[str, Any]) -> RenderedEmail:
    try:
        renderer = EMAIL_TEMPLATES[name]
    except KeyError:
        raise KeyError(f"Template not found: {name}")
    return renderer(variables)
