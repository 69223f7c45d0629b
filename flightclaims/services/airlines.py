"""
Airline configuration registry and submission content generation.

Each airline is filed through one channel:
- email: claim email to the airline's claims address
- web_form: form-encoded post to the airline's claim form endpoint
- api: JSON post to the airline's claims API
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from flightclaims.db.models import Claim

SubmissionMethod = Literal["email", "web_form", "api"]

DEFAULT_FORM_FIELDS = {
    "passenger_name": "Full Name",
    "email": "Email",
    "flight_number": "Flight Number",
    "departure_date": "Departure Date",
    "departure_airport": "Departure Airport",
    "arrival_airport": "Arrival Airport",
    "delay_duration": "Delay Duration",
    "booking_reference": "Booking Reference",
}


@dataclass
class AirlineConfig:
    airline_code: str
    airline_name: str
    submission_method: SubmissionMethod
    claim_email: Optional[str] = None
    claim_form_url: Optional[str] = None
    api_endpoint: Optional[str] = None
    required_documents: List[str] = field(
        default_factory=lambda: ["boarding_pass", "delay_proof", "passenger_details"]
    )
    # Claim attributes this airline insists on, beyond the common filing fields
    required_claim_fields: List[str] = field(default_factory=list)
    expected_response_time: str = "2-4 weeks"
    follow_up_schedule: List[str] = field(default_factory=lambda: ["2 weeks", "4 weeks", "8 weeks"])
    claim_form_fields: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_FORM_FIELDS))
    aliases: List[str] = field(default_factory=list)
    regulation: str = "EU261"
    is_active: bool = True


AIRLINE_CONFIGS: Dict[str, AirlineConfig] = {
    "BA": AirlineConfig(
        airline_code="BA",
        airline_name="British Airways",
        submission_method="web_form",
        claim_form_url="https://www.britishairways.com/en-gb/information/legal/eu261",
        required_claim_fields=["delay_reason"],
        follow_up_schedule=["2 weeks", "4 weeks", "8 weeks"],
        aliases=["British Air", "BritishAirways", "BAW"],
        regulation="UK261",
    ),
    "FR": AirlineConfig(
        airline_code="FR",
        airline_name="Ryanair",
        submission_method="email",
        claim_email="eu261@ryanair.com",
        required_claim_fields=["booking_reference"],
        expected_response_time="3-6 weeks",
        follow_up_schedule=["3 weeks", "6 weeks", "10 weeks"],
        aliases=["Ryan Air", "RYR"],
    ),
    "U2": AirlineConfig(
        airline_code="U2",
        airline_name="EasyJet",
        submission_method="web_form",
        claim_form_url="https://www.easyjet.com/en/help/contact/compensation-claims",
        required_claim_fields=["booking_reference"],
        aliases=["Easy Jet", "EZY"],
    ),
    "LH": AirlineConfig(
        airline_code="LH",
        airline_name="Lufthansa",
        submission_method="email",
        claim_email="eu261@lufthansa.com",
        aliases=["Deutsche Lufthansa", "DLH"],
    ),
    "AF": AirlineConfig(
        airline_code="AF",
        airline_name="Air France",
        submission_method="web_form",
        claim_form_url="https://www.airfrance.com/contact/compensation-claim",
        expected_response_time="3-5 weeks",
        follow_up_schedule=["3 weeks", "5 weeks", "8 weeks"],
        aliases=["AirFrance", "AFR"],
    ),
    "IB": AirlineConfig(
        airline_code="IB",
        airline_name="Iberia",
        submission_method="email",
        claim_email="eu261@iberia.com",
        expected_response_time="3-6 weeks",
        follow_up_schedule=["3 weeks", "6 weeks", "10 weeks"],
        aliases=["Iberia Airlines", "IBE"],
    ),
    "SK": AirlineConfig(
        airline_code="SK",
        airline_name="SAS Scandinavian",
        submission_method="web_form",
        claim_form_url="https://www.sas.se/en/contact-us/compensation-claim/",
        aliases=["Scandinavian Airlines", "SAS"],
    ),
    "TP": AirlineConfig(
        airline_code="TP",
        airline_name="TAP Air Portugal",
        submission_method="email",
        claim_email="eu261@tap.pt",
        expected_response_time="3-6 weeks",
        follow_up_schedule=["3 weeks", "6 weeks", "10 weeks"],
        aliases=["TAP Portugal", "TAP"],
    ),
}

_GENERIC_NAMES = {"airline", "air", "airways", "aviation"}


def register_airline_config(config: AirlineConfig) -> None:
    """Add or replace an airline configuration."""
    AIRLINE_CONFIGS[config.airline_code.upper()] = config


def get_airline_config(airline: Optional[str]) -> Optional[AirlineConfig]:
    """Resolve an airline code, alias or name to its configuration."""
    if not airline:
        return None

    code_match = AIRLINE_CONFIGS.get(airline.strip().upper())
    if code_match:
        return code_match

    query = airline.strip().lower()
    if len(query) < 3 or query in _GENERIC_NAMES:
        return None

    for config in AIRLINE_CONFIGS.values():
        if any(alias.lower() == query for alias in config.aliases):
            return config

    for config in AIRLINE_CONFIGS.values():
        name = config.airline_name.lower()
        if name == query or (len(query) >= 4 and query in name):
            return config

    return None


def follow_up_offset_days(config: Optional[AirlineConfig], default_days: int = 14) -> int:
    """Days until the first follow-up: first entry of the airline schedule."""
    if config is None or not config.follow_up_schedule:
        return default_days
    first = config.follow_up_schedule[0]
    match = re.search(r"(\d+)", first)
    if not match:
        return default_days
    value = int(match.group(1))
    return value if "day" in first.lower() else value * 7


def claim_field_values(claim: Claim) -> Dict[str, Any]:
    return {
        "passenger_name": claim.passenger_name,
        "first_name": claim.first_name,
        "last_name": claim.last_name,
        "email": claim.email,
        "flight_number": claim.flight_number,
        "departure_date": claim.departure_date,
        "departure_airport": claim.departure_airport,
        "arrival_airport": claim.arrival_airport,
        "delay_duration": claim.delay_duration,
        "delay_reason": claim.delay_reason or "Not specified",
        "booking_reference": claim.booking_reference or "",
    }


@dataclass
class Submission:
    method: SubmissionMethod
    subject: str
    body: str
    attachments: List[str]
    to: Optional[str] = None
    url: Optional[str] = None
    form_data: Dict[str, str] = field(default_factory=dict)
    payload: Dict[str, Any] = field(default_factory=dict)


def _email_body(config: AirlineConfig, claim: Claim) -> str:
    values = claim_field_values(claim)
    documents = "\n".join(f"- {doc}" for doc in config.required_documents)
    return (
        f"Dear {config.airline_name} Customer Service,\n\n"
        f"I am writing to submit a compensation claim under {config.regulation} "
        "regulations for the following flight:\n\n"
        f"Flight Details:\n"
        f"- Flight Number: {values['flight_number']}\n"
        f"- Departure Date: {values['departure_date']}\n"
        f"- Route: {values['departure_airport']} to {values['arrival_airport']}\n"
        f"- Delay Duration: {values['delay_duration']}\n"
        f"- Delay Reason: {values['delay_reason']}\n\n"
        f"Passenger Details:\n"
        f"- Name: {values['passenger_name']}\n"
        f"- Email: {values['email']}\n"
        f"- Booking Reference: {values['booking_reference'] or 'Not provided'}\n\n"
        f"Supporting documents:\n{documents}\n\n"
        f"Claim reference: {claim.claim_id}\n\n"
        "Best regards,\nFlightClaims Support Team"
    )


def generate_submission(config: AirlineConfig, claim: Claim) -> Submission:
    """Build the airline-specific submission for a claim."""
    subject = (
        f"{config.regulation} Compensation Claim - Flight {claim.flight_number} - {claim.departure_date}"
    )
    documents = {
        "boarding_pass": claim.boarding_pass_url,
        "delay_proof": claim.delay_proof_url,
    }
    attachments = [url for doc, url in documents.items() if doc in config.required_documents and url]

    if config.submission_method == "email":
        return Submission(
            method="email",
            to=config.claim_email,
            subject=subject,
            body=_email_body(config, claim),
            attachments=attachments,
        )

    values = claim_field_values(claim)
    if config.submission_method == "web_form":
        form_data = {
            label: str(values.get(name, ""))
            for name, label in config.claim_form_fields.items()
        }
        form_data["Supporting Documents"] = ", ".join(attachments)
        return Submission(
            method="web_form",
            url=config.claim_form_url,
            subject=subject,
            body=_email_body(config, claim),
            attachments=attachments,
            form_data=form_data,
        )

    return Submission(
        method="api",
        url=config.api_endpoint,
        subject=subject,
        body=_email_body(config, claim),
        attachments=attachments,
        payload={
            "external_reference": claim.claim_id,
            "regulation": config.regulation,
            "passenger": {
                "first_name": claim.first_name,
                "last_name": claim.last_name,
                "email": claim.email,
            },
            "flight": {
                "number": claim.flight_number,
                "date": claim.departure_date,
                "origin": claim.departure_airport,
                "destination": claim.arrival_airport,
                "delay": claim.delay_duration,
                "delay_reason": claim.delay_reason,
            },
            "booking_reference": claim.booking_reference,
            "documents": attachments,
        },
    )
