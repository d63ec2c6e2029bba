"""
QR Payloads

Text encoded in the QR codes printed at canteens, and the decoder that turns
a scanned payload back into a vendor id. Rendering the QR image and driving
the camera are left to the clients.

Recognised payloads:
    - Menu JSON:   {"type": "menu", "canteenId": ..., "menuId": ...,
                    "canteenName": ..., "items": [...]}
    - Shop string: "ezyeats-shop:<vendor_id>"  (namespace is configurable)
    - Pair:        "<canteen_id>:<menu_id>", alone or as the last path
                   segment of an http(s) URL
"""

import json
import logging
from typing import Iterable, Optional
from urllib.parse import unquote, urlsplit

from canteen.core.config import get_settings
from canteen.core.exceptions import InvalidQRPayloadError, ValidationError
from canteen.schemas import MenuItem, QRPayload, QRPayloadKind

logger = logging.getLogger(__name__)


def _require_vendor_id(vendor_id: str) -> str:
    if not isinstance(vendor_id, str) or not vendor_id.strip():
        raise ValidationError("Shop ID is required")
    return vendor_id


def build_shop_payload(vendor_id: str, namespace: Optional[str] = None) -> str:
    """Short payload: "<namespace>:<vendor_id>"."""
    namespace = namespace or get_settings().qr_namespace
    return f"{namespace}:{_require_vendor_id(vendor_id)}"


def build_menu_payload(
    vendor_id: str,
    items: Iterable[MenuItem],
    vendor_name: Optional[str] = None,
) -> str:
    """
    JSON payload describing a vendor's menu.

    Only available items are listed; prices are decimal strings.
    """
    _require_vendor_id(vendor_id)
    payload = {
        "type": QRPayloadKind.MENU.value,
        "canteenId": vendor_id,
        "menuId": vendor_id,
        "canteenName": vendor_name or get_settings().default_vendor_name,
        "items": [
            {"id": item.id, "name": item.name, "price": str(item.price)}
            for item in items
            if item.available
        ],
    }
    return json.dumps(payload, ensure_ascii=False)


def parse_payload(payload: str, namespace: Optional[str] = None) -> QRPayload:
    """
    Decode a scanned payload.

    Raises:
        InvalidQRPayloadError: If the text matches none of the known forms
    """
    if not isinstance(payload, str) or not payload.strip():
        raise InvalidQRPayloadError("QR payload is empty")

    text = payload.strip()
    namespace = namespace or get_settings().qr_namespace

    if text.startswith("{"):
        return _parse_menu_json(text)

    prefix = f"{namespace}:"
    if text.startswith(prefix):
        vendor_id = text[len(prefix):].strip()
        if not vendor_id:
            raise InvalidQRPayloadError("Shop QR payload has no shop ID")
        return QRPayload(kind=QRPayloadKind.SHOP, vendor_id=vendor_id)

    if text.lower().startswith(("http://", "https://")):
        segments = [segment for segment in urlsplit(text).path.split("/") if segment]
        if not segments or ":" not in unquote(segments[-1]):
            raise InvalidQRPayloadError("Invalid URL format")
        text = unquote(segments[-1])

    if ":" in text:
        canteen_id, menu_id = (part.strip() for part in text.split(":", 1))
        if canteen_id and menu_id:
            return QRPayload(kind=QRPayloadKind.PAIR, vendor_id=canteen_id, menu_id=menu_id)
        raise InvalidQRPayloadError("Missing canteenId or menuId")

    raise InvalidQRPayloadError("Invalid QR code format")


def resolve_vendor_id(payload: str, namespace: Optional[str] = None) -> str:
    """Vendor id carried by a scanned payload."""
    return parse_payload(payload, namespace).vendor_id


def _parse_menu_json(text: str) -> QRPayload:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidQRPayloadError("QR payload is not valid JSON") from e

    if not isinstance(data, dict):
        raise InvalidQRPayloadError("QR payload must be a JSON object")
    if data.get("type", QRPayloadKind.MENU.value) != QRPayloadKind.MENU.value:
        raise InvalidQRPayloadError(f"Unsupported QR payload type: {data.get('type')!r}")

    canteen_id = data.get("canteenId")
    if canteen_id is None or not str(canteen_id).strip():
        raise InvalidQRPayloadError("Menu QR payload has no canteenId")

    menu_id = data.get("menuId")
    vendor_name = data.get("canteenName")
    logger.debug(f"Decoded menu QR payload for canteen {canteen_id}")

    return QRPayload(
        kind=QRPayloadKind.MENU,
        vendor_id=str(canteen_id).strip(),
        menu_id=str(menu_id) if menu_id is not None else str(canteen_id).strip(),
        vendor_name=str(vendor_name) if vendor_name is not None else None,
    )
