"""
Address resolution and the saved address book.

Checkout ships to either a saved address or one typed inline. Either way the
address is copied by value onto the order, so later edits or deletes in the
address book never rewrite history.
"""
import logging
import re
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.orm import Session

from .auth import Caller
from .errors import NotFound, ValidationError
from .models import AddressCreate, AddressInput, AddressOut, AddressSnapshot, AddressUpdate
from .tables import Address

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("full_name", "phone", "address_line1", "city", "state", "pincode")

FIELD_LABELS = {
    "full_name": "Full name",
    "phone": "Phone",
    "address_line1": "Address line 1",
    "city": "City",
    "state": "State",
    "pincode": "Pincode",
}

MIN_PHONE_DIGITS = 10
PINCODE_RE = re.compile(r"^\d{6}$")


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def validate_address(data: AddressInput) -> AddressSnapshot:
    """
    Validate inline address fields.

    Raises:
        ValidationError naming the first missing or invalid field
    """
    for field in REQUIRED_FIELDS:
        if not _clean(getattr(data, field)):
            raise ValidationError(f"{FIELD_LABELS[field]} is required", field=field)

    phone = _clean(data.phone)
    if len(re.sub(r"\D", "", phone)) < MIN_PHONE_DIGITS:
        raise ValidationError("Please enter a valid phone number", field="phone")

    pincode = _clean(data.pincode)
    if not PINCODE_RE.match(pincode):
        raise ValidationError("Please enter a valid 6-digit pincode", field="pincode")

    return AddressSnapshot(
        full_name=_clean(data.full_name),
        phone=phone,
        email=_clean(data.email),
        address_line1=_clean(data.address_line1),
        address_line2=_clean(data.address_line2),
        city=_clean(data.city),
        state=_clean(data.state),
        pincode=pincode,
    )


def snapshot_of(address: Address, email: Optional[str] = None) -> AddressSnapshot:
    return AddressSnapshot(
        full_name=address.full_name,
        phone=address.phone,
        email=email,
        address_line1=address.address_line1,
        address_line2=address.address_line2,
        city=address.city,
        state=address.state,
        pincode=address.pincode,
    )


def address_to_out(address: Address) -> AddressOut:
    return AddressOut(
        id=address.id,
        is_default=address.is_default,
        created_at=address.created_at,
        **snapshot_of(address).model_dump(exclude={"email"}),
    )


def get_owned_address(db: Session, caller: Caller, address_id: str) -> Address:
    address = db.scalar(
        select(Address).where(Address.id == address_id, Address.user_id == caller.user_id)
    )
    if address is None:
        raise NotFound("Address", address_id)
    return address


def resolve_shipping_address(
    db: Session,
    caller: Caller,
    address_id: Optional[str],
    inline: Optional[AddressInput],
) -> AddressSnapshot:
    """
    Pick the address an order ships to.

    Exactly one of address_id (a saved address of the caller) or inline
    fields must be given. Stored addresses are never modified.
    """
    if address_id and inline is not None:
        raise ValidationError(
            "Provide either a saved address or a new address, not both",
            field="address_id",
        )

    if address_id:
        address = get_owned_address(db, caller, address_id)
        snapshot = snapshot_of(address, email=caller.email)
        # saved rows predate current rules, so hold them to the same checks
        return validate_address(AddressInput(**snapshot.model_dump()))

    if inline is None:
        raise ValidationError("Shipping address is required", field="shipping_address")

    snapshot = validate_address(inline)
    if snapshot.email is None:
        snapshot.email = caller.email
    return snapshot


# =============================================================================
# Address book
# =============================================================================

def list_addresses(db: Session, caller: Caller) -> list[Address]:
    """Caller's addresses, default first."""
    return list(
        db.scalars(
            select(Address)
            .where(Address.user_id == caller.user_id)
            .order_by(Address.is_default.desc(), Address.created_at.desc())
        )
    )


def _make_default(db: Session, user_id: str, address_id: str) -> None:
    """Flip the default in one statement: the target on, every sibling off."""
    db.execute(
        update(Address)
        .where(Address.user_id == user_id)
        .values(is_default=case((Address.id == address_id, True), else_=False))
        .execution_options(synchronize_session="fetch")
    )


def create_address(db: Session, caller: Caller, data: AddressCreate) -> Address:
    snapshot = validate_address(data)

    address = Address(
        user_id=caller.user_id,
        is_default=False,
        **snapshot.model_dump(exclude={"email"}),
    )
    db.add(address)
    db.flush()

    if data.is_default:
        _make_default(db, caller.user_id, address.id)

    db.commit()
    db.refresh(address)
    logger.info("Address %s created for user %s (default=%s)", address.id, caller.user_id, address.is_default)
    return address


def update_address(db: Session, caller: Caller, address_id: str, data: AddressUpdate) -> Address:
    address = get_owned_address(db, caller, address_id)

    changes = data.model_dump(exclude_unset=True, exclude={"is_default", "email"})
    merged = snapshot_of(address).model_dump()
    merged.update(changes)
    snapshot = validate_address(AddressInput(**merged))

    for field, value in snapshot.model_dump(exclude={"email"}).items():
        setattr(address, field, value)

    if data.is_default is True:
        db.flush()
        _make_default(db, caller.user_id, address.id)
    elif data.is_default is False:
        address.is_default = False

    db.commit()
    db.refresh(address)
    logger.info("Address %s updated for user %s", address.id, caller.user_id)
    return address


def delete_address(db: Session, caller: Caller, address_id: str) -> None:
    address = get_owned_address(db, caller, address_id)
    db.delete(address)
    db.commit()
    logger.info("Address %s deleted for user %s", address_id, caller.user_id)
