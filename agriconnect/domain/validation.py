"""Client-side form checks run before any backend call."""

from __future__ import annotations

import math
import re
from typing import Dict, Optional, Tuple

from ..schemas import ImageUpload, ListingForm, SignInForm, SignUpForm


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^\+?\d{9,15}$")
MIN_PASSWORD_LENGTH = 6
IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/gif"}


def _check_email(email: str, errors: Dict[str, str]) -> None:
    if not email:
        errors["email"] = "Email is required"
    elif not EMAIL_RE.match(email):
        errors["email"] = "Please enter a valid email address"


def _check_password(password: str, errors: Dict[str, str]) -> None:
    if not password:
        errors["password"] = "Password is required"
    elif len(password) < MIN_PASSWORD_LENGTH:
        errors["password"] = "Password must be at least 6 characters"


def validate_sign_up(form: SignUpForm) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    _check_email(form.email.strip(), errors)
    if not form.first_name.strip():
        errors["first_name"] = "First name is required"
    if not form.last_name.strip():
        errors["last_name"] = "Last name is required"
    _check_password(form.password, errors)
    if not form.password2:
        errors["password2"] = "Please confirm your password"
    elif form.password != form.password2:
        errors["password2"] = "Passwords do not match"
    phone = form.phone_number.strip()
    if phone and not PHONE_RE.match(phone):
        errors["phone_number"] = "Please enter a valid phone number"
    return errors


def validate_sign_in(form: SignInForm) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    _check_email(form.email.strip().lower(), errors)
    _check_password(form.password, errors)
    return errors


def parse_positive(text: str) -> Optional[float]:
    try:
        value = float((text or "").strip())
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


def parse_distance(text: str) -> Tuple[bool, Optional[float]]:
    """Return ``(ok, km)``; an empty field is ok and means no distance."""
    text = (text or "").strip()
    if not text:
        return True, None
    try:
        value = float(text)
    except ValueError:
        return False, None
    if not math.isfinite(value) or value < 0:
        return False, None
    return True, value


def validate_listing(form: ListingForm) -> Tuple[Optional[str], Optional[float], Optional[float]]:
    """Return ``(error, quantity, price)``; the first failing check wins."""
    if not form.crop_name.strip():
        return "Crop name is required.", None, None
    if not form.farmer_location.strip():
        return "Produce location is required.", None, None
    quantity = parse_positive(form.quantity)
    if quantity is None:
        return "Quantity must be a valid number greater than 0.", None, None
    price = parse_positive(form.price_per_unit)
    if price is None:
        return "Price per unit must be a valid number greater than 0.", None, None
    if not parse_distance(form.distance_km)[0]:
        return "Distance must be a valid number of kilometres (0 or more).", None, None
    if form.available_from is None:
        return "Available from date is required.", None, None
    return None, quantity, price


def gps_location_text(lat: Optional[float], lng: Optional[float]) -> str:
    if lat is None or lng is None:
        return ""
    return f"{lat:.4f}, {lng:.4f}"


def validate_image(image: ImageUpload, max_bytes: int) -> Optional[str]:
    if (image.content_type or "").lower() not in IMAGE_TYPES:
        return "Please select a valid image file (JPEG, PNG, WebP, or GIF)."
    if len(image.data) > max_bytes:
        return "Image size should be less than 5MB."
    return None
