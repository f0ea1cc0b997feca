"""
Exotel API client - virtual numbers (Exophones) and outbound calls.

The v1 API answers in XML (``<TwilioResponse>`` envelope) for most accounts
and in JSON for ``.json`` endpoints, so every response is parsed XML-first
with a JSON fallback.

Usage:
    from app.services.exotel_client import get_exotel_client, find_number

    exotel = get_exotel_client()
    numbers = await exotel.list_numbers()
    match = find_number(numbers, "+912247790694")
"""

import json
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from app.config import settings
from app.services.http_client import request_with_retry

logger = logging.getLogger(__name__)


class ExotelAPIError(Exception):
    """Exotel returned an error or an unparseable response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExotelNotConfigured(ExotelAPIError):
    pass


# What a failed Exotel call can raise once retries are exhausted
VENDOR_ERRORS = (ExotelAPIError, httpx.TransportError)


# ── Phone numbers ───────────────────────────────────────────

_PUNCTUATION = re.compile(r"[\s\-()]")


def normalize_phone(number: str) -> str:
    """Reduce an Indian number to its 10-digit national form.

    "+912247790694", "912247790694", "02247790694" and "2247790694" all
    normalize to "2247790694".
    """
    num = _PUNCTUATION.sub("", number or "")
    if num.startswith("+91"):
        num = num[3:]
    elif num.startswith("91") and len(num) == 12:
        num = num[2:]
    if num.startswith("0"):
        num = num[1:]
    return num


def format_phone_for_exotel(number: str) -> str:
    """Dialable form for Exotel: no punctuation, no '+', 91-prefixed."""
    num = _PUNCTUATION.sub("", number or "").lstrip("+")
    if len(num) == 10 and not num.startswith("91"):
        num = "91" + num
    return num


def format_exophone(number: str) -> str:
    """Exophones are passed as-is (minus '+') when already in short/0-prefixed form."""
    if number.startswith("0") or len(number) <= 11:
        return number.lstrip("+")
    return format_phone_for_exotel(number)


# ── Response types ──────────────────────────────────────────

@dataclass
class Exophone:
    sid: str
    phone_number: str
    friendly_name: str = ""
    capabilities: Dict[str, bool] = field(default_factory=lambda: {"voice": False, "sms": False})
    date_created: str = ""
    date_updated: str = ""


@dataclass
class AvailablePhone:
    phone_number: str
    friendly_name: str = ""
    country: str = "IN"
    region: str = ""


@dataclass
class OutboundCall:
    sid: str
    status: str = "initiated"
    from_number: str = ""
    to_number: str = ""
    direction: str = "outbound"
    raw: Dict[str, Any] = field(default_factory=dict)


def find_number(numbers: List[Exophone], phone_number: str) -> Optional[Exophone]:
    """Find an owned number regardless of +91 / 91 / 0 formatting."""
    wanted = normalize_phone(phone_number)
    for num in numbers:
        if normalize_phone(num.phone_number) == wanted:
            return num
    return None


# ── XML / JSON parsing ──────────────────────────────────────

def _parse_xml(text: str) -> Optional[ET.Element]:
    try:
        return ET.fromstring(text)
    except ET.ParseError:
        return None


def _text(el: Optional[ET.Element], *names: str, default: str = "") -> str:
    if el is None:
        return default
    for name in names:
        child = el.find(name)
        if child is not None and child.text is not None:
            return child.text.strip()
    return default


def _flag(value: Any) -> bool:
    return str(value).strip().lower() == "true"


def _find_all(root: ET.Element, container: str, item: str) -> List[ET.Element]:
    """Items may sit under <TwilioResponse><Container>, <Container>, or directly in the envelope."""
    if root.tag == container:
        return root.findall(item)
    found = root.findall(f"{container}/{item}")
    if found:
        return found
    if root.tag == item:
        return [root]
    return root.findall(item)


def _exophone_from_xml(el: ET.Element) -> Exophone:
    caps = el.find("Capabilities")
    return Exophone(
        sid=_text(el, "Sid", "sid"),
        phone_number=_text(el, "PhoneNumber", "phone_number"),
        friendly_name=_text(el, "FriendlyName", "friendly_name"),
        capabilities={
            "voice": _flag(_text(caps, "Voice", "voice")),
            "sms": _flag(_text(caps, "SMS", "sms")),
        },
        date_created=_text(el, "DateCreated", "date_created"),
        date_updated=_text(el, "DateUpdated", "date_updated"),
    )


def _exophone_from_json(data: Dict[str, Any]) -> Exophone:
    data = data.get("IncomingPhoneNumber", data)
    caps = data.get("Capabilities") or data.get("capabilities") or {}
    return Exophone(
        sid=data.get("Sid") or data.get("sid") or "",
        phone_number=data.get("PhoneNumber") or data.get("phone_number") or "",
        friendly_name=data.get("FriendlyName") or data.get("friendly_name") or "",
        capabilities={
            "voice": bool(caps.get("Voice", caps.get("voice", False))),
            "sms": bool(caps.get("SMS", caps.get("sms", False))),
        },
        date_created=data.get("DateCreated") or data.get("date_created") or "",
        date_updated=data.get("DateUpdated") or data.get("date_updated") or "",
    )


def _load_json(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        raise ExotelAPIError(f"Failed to parse Exotel {what} response: {text[:500]}")


def parse_exophones(text: str) -> List[Exophone]:
    root = _parse_xml(text)
    if root is not None:
        return [_exophone_from_xml(el) for el in _find_all(root, "IncomingPhoneNumbers", "IncomingPhoneNumber")]
    data = _load_json(text, "numbers")
    items = data.get("IncomingPhoneNumbers", []) if isinstance(data, dict) else data
    if isinstance(items, dict):
        items = [items]
    return [_exophone_from_json(item) for item in items]


def parse_exophone(text: str) -> Exophone:
    numbers = parse_exophones(text)
    if not numbers:
        raise ExotelAPIError("Invalid response format from Exotel: no IncomingPhoneNumber")
    return numbers[0]


def parse_available_phones(text: str, region: str) -> List[AvailablePhone]:
    root = _parse_xml(text)
    if root is not None:
        return [
            AvailablePhone(
                phone_number=_text(el, "PhoneNumber", "phone_number"),
                friendly_name=_text(el, "FriendlyName", "friendly_name"),
                country=_text(el, "Country", default="IN"),
                region=_text(el, "Region", default=region),
            )
            for el in _find_all(root, "ExoPhones", "ExoPhone")
        ]
    data = _load_json(text, "available numbers")
    return [
        AvailablePhone(
            phone_number=p.get("phone_number", ""),
            friendly_name=p.get("friendly_name", ""),
            country=p.get("country", "IN"),
            region=p.get("region", region),
        )
        for p in data.get("ExoPhones", [])
    ]


def parse_call(text: str) -> OutboundCall:
    root = _parse_xml(text)
    if root is not None:
        call = root if root.tag == "Call" else root.find("Call")
        if call is None or not _text(call, "Sid", "sid"):
            raise ExotelAPIError("Invalid response format from Exotel: no Call")
        return OutboundCall(
            sid=_text(call, "Sid", "sid"),
            status=_text(call, "Status", default="initiated"),
            from_number=_text(call, "From"),
            to_number=_text(call, "To"),
            direction=_text(call, "Direction", default="outbound"),
            raw={child.tag: child.text for child in call},
        )
    data = _load_json(text, "call")
    call = data.get("Call") or {}
    if not call.get("Sid"):
        raise ExotelAPIError("Invalid response format from Exotel: no Call")
    return OutboundCall(
        sid=call["Sid"],
        status=call.get("Status") or "initiated",
        from_number=call.get("From") or "",
        to_number=call.get("To") or "",
        direction=call.get("Direction") or "outbound",
        raw=call,
    )


def parse_rest_exception(text: str) -> Optional[str]:
    """Extract ``RestException/Message`` from an error body, if any."""
    root = _parse_xml(text)
    if root is not None:
        exc = root if root.tag == "RestException" else root.find("RestException")
        return _text(exc, "Message") or None
    try:
        data = json.loads(text)
    except ValueError:
        return None
    exc = data.get("RestException") if isinstance(data, dict) else None
    return exc.get("Message") if isinstance(exc, dict) else None


# ── Client ──────────────────────────────────────────────────

class ExotelClient:
    """Thin async wrapper over the Exotel v1 REST API."""

    def __init__(
        self,
        api_key: str,
        api_token: str,
        account_sid: str,
        subdomain: str = "api.in.exotel.com",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.base_url = f"https://{subdomain}/v1/Accounts/{account_sid}"
        self._auth = httpx.BasicAuth(api_key, api_token)
        self._transport = transport

    async def _request(self, method: str, path: str, what: str, **kwargs) -> str:
        url = f"{self.base_url}/{path}"
        async with httpx.AsyncClient(auth=self._auth, transport=self._transport) as client:
            response = await request_with_retry(method, url, client=client, label="EXOTEL", **kwargs)
        if response.status_code >= 400:
            detail = parse_rest_exception(response.text) or response.text[:500]
            logger.error(f"[EXOTEL] {what} failed: {response.status_code} {detail}")
            raise ExotelAPIError(f"Failed to {what}: {response.status_code} {detail}", response.status_code)
        return response.text

    async def search_available_numbers(self, region: str = "MH") -> List[AvailablePhone]:
        """Search purchasable Exophones in an Indian telecom circle."""
        text = await self._request(
            "GET", "AvailablePhoneNumbers", "search available numbers", params={"InRegion": region}
        )
        return parse_available_phones(text, region)

    async def buy_number(self, phone_number: str, friendly_name: str) -> Exophone:
        # Purchases are attempted once; a repeated POST could buy twice
        text = await self._request(
            "POST", "IncomingPhoneNumbers", "purchase number",
            data={"PhoneNumber": phone_number, "FriendlyName": friendly_name},
            max_retries=0,
        )
        number = parse_exophone(text)
        logger.info(f"[EXOTEL] Purchased {number.phone_number} ({number.sid})")
        return number

    async def get_number(self, exophone_sid: str) -> Exophone:
        text = await self._request("GET", f"IncomingPhoneNumbers/{exophone_sid}", "get number")
        return parse_exophone(text)

    async def list_numbers(self) -> List[Exophone]:
        """All Exophones owned by the account."""
        text = await self._request("GET", "IncomingPhoneNumbers", "list numbers")
        numbers = parse_exophones(text)
        logger.info(f"[EXOTEL] Found {len(numbers)} phone numbers")
        return numbers

    async def update_number(self, exophone_sid: str, friendly_name: str) -> Exophone:
        text = await self._request(
            "PUT", f"IncomingPhoneNumbers/{exophone_sid}", "update number",
            data={"FriendlyName": friendly_name},
        )
        return parse_exophone(text)

    async def place_outbound_call(
        self,
        from_number: str,
        to_number: str,
        *,
        app_id: Optional[str] = None,
        sip_uri: Optional[str] = None,
    ) -> OutboundCall:
        """Call ``to_number`` from an Exophone and hand the call to a flow or SIP target.

        With ``app_id`` the call runs the Exotel flow (which bridges into the
        LiveKit inbound trunk); with ``sip_uri`` it is connected straight to
        that SIP endpoint.
        """
        formatted_from = format_exophone(from_number)
        form = {
            "From": formatted_from,
            "To": format_phone_for_exotel(to_number),
            "CallerId": formatted_from,
            "CallType": "trans",
        }
        if app_id:
            form["AppId"] = app_id
        if sip_uri:
            form["ConnectSip"] = sip_uri

        logger.info(f"[EXOTEL] Placing call {form['From']} -> {form['To']} (app={app_id} sip={sip_uri})")
        # A retried POST could dial twice, so calls are attempted once
        text = await self._request("POST", "Calls/connect", "place outbound call", data=form, max_retries=0)
        call = parse_call(text)
        logger.info(f"[EXOTEL] Call initiated: {call.sid}")
        return call


def get_exotel_client() -> ExotelClient:
    """Build a client from settings; raises if credentials are missing."""
    if not (settings.exotel_api_key and settings.exotel_api_token):
        raise ExotelNotConfigured("Exotel credentials missing. Set EXOTEL_API_KEY and EXOTEL_API_TOKEN.")
    return ExotelClient(
        api_key=settings.exotel_api_key,
        api_token=settings.exotel_api_token,
        account_sid=settings.exotel_account_sid or settings.exotel_api_key,
        subdomain=settings.exotel_subdomain,
    )
