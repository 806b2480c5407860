import re
from typing import Optional

from ..schemas import ContactLinks


UGANDA_COUNTRY_CODE = "256"


def safe_phone(phone: Optional[str]) -> Optional[str]:
    text = (phone or "").strip()
    return text or None


def normalize_whatsapp(phone: str, country_code: str = UGANDA_COUNTRY_CODE) -> str:
    """Digits only; a local 10-digit ``0XXXXXXXXX`` number gets the country code."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10 and digits.startswith("0"):
        return f"{country_code}{digits[1:]}"
    return digits


def tel_link(phone: Optional[str]) -> Optional[str]:
    value = safe_phone(phone)
    return f"tel:{value}" if value else None


def whatsapp_link(phone: Optional[str], country_code: str = UGANDA_COUNTRY_CODE) -> Optional[str]:
    value = safe_phone(phone)
    if not value:
        return None
    digits = normalize_whatsapp(value, country_code)
    return f"https://wa.me/{digits}" if digits else None


def contact_links(phone: Optional[str], country_code: str = UGANDA_COUNTRY_CODE) -> ContactLinks:
    value = safe_phone(phone)
    return ContactLinks(
        phone=value,
        tel=tel_link(value),
        whatsapp=whatsapp_link(value, country_code),
    )
