"""Payout onboarding for community owners through Razorpay Route.

A community can sell tickets only once its linked account is ``ACTIVATED``.
The local :class:`~showya.models.RazorpayAccount` row tracks the provider
account, its stakeholder and the ``route`` product; the community's
``kyc_status`` column mirrors the row so listings never need a join.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from .communities import get_owned_community
from .errors import BadRequestError, NotFoundError, RazorpayError
from .models import (
    KYC_ACTIVATED,
    KYC_IN_PROGRESS,
    KYC_NEEDS_INFO,
    KYC_NOT_STARTED,
    KYC_PENDING,
    KYC_REJECTED,
    KYC_VERIFIED,
    Community,
    KycDocument,
    RazorpayAccount,
    User,
)
from .razorpay import RazorpayClient, dashboard_onboarding_url
from .utils import is_public_ipv4, mask_account_number, mask_ifsc, utcnow

logger = logging.getLogger("uvicorn.error")

KYC_WEBHOOK_STATUS = {
    "account.kyc.pending_verification": KYC_IN_PROGRESS,
    "account.requirements.needs_attention": KYC_NEEDS_INFO,
    "account.rejected": KYC_REJECTED,
    "account.verified": KYC_VERIFIED,
    "account.activated": KYC_ACTIVATED,
    "account.suspended": KYC_IN_PROGRESS,
}

PRODUCT_ACTIVATION_STATUS = {
    "activated": KYC_ACTIVATED,
    "under_review": KYC_PENDING,
    "needs_clarification": KYC_NEEDS_INFO,
}

IP_HEADERS = (
    "x-forwarded-for",
    "x-client-ip",
    "true-client-ip",
    "cf-connecting-ip",
    "x-real-ip",
)
FALLBACK_IP = "49.207.192.1"

DOCUMENT_MIME_TYPES = ("image/jpeg", "image/png", "application/pdf")
MAX_DOCUMENT_BYTES = 2 * 1024 * 1024
UPDATE_TYPES = ("address", "stakeholder", "bank", "documents")

_EXISTING_ACCOUNT_RE = re.compile(r"account\s*-\s*([A-Za-z0-9]+)")


def set_kyc_status(
    account: RazorpayAccount | None,
    community: Community,
    status: str,
    *,
    error_reason: str | None = None,
) -> None:
    """Set the status on the payment account and mirror it on the community."""
    if account is not None:
        account.kyc_status = status
        if error_reason is not None:
            account.error_reason = error_reason
        account.last_updated = utcnow()
    community.kyc_status = status


def serialize_account(account: RazorpayAccount) -> dict[str, Any]:
    return {
        "id": account.id,
        "community_id": account.community_id,
        "razorpay_account_id": account.razorpay_account_id,
        "stakeholder_id": account.stakeholder_id,
        "product_id": account.product_id,
        "kyc_status": account.kyc_status,
        "error_reason": account.error_reason,
        "onboarding_url": account.onboarding_url,
        "bank_masked": account.bank_masked,
        "bank_ifsc": account.bank_ifsc,
        "bank_beneficiary_name": account.bank_beneficiary_name,
        "products_requested": account.products_requested,
        "products_activated": account.products_activated,
        "last_updated": account.last_updated.isoformat() if account.last_updated else None,
    }


def get_valid_ip(
    headers: Mapping[str, str], *, allow_fallback: bool = True
) -> str | None:
    """Return the first public IPv4 address found in the forwarding headers."""
    for name in IP_HEADERS:
        raw = headers.get(name)
        if not raw:
            continue
        for candidate in raw.split(","):
            candidate = candidate.strip()
            if is_public_ipv4(candidate):
                return candidate
    return FALLBACK_IP if allow_fallback else None


# Sanitizers for the values Razorpay validates strictly


def sanitize_description(raw: str | None) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9\s-]", "", raw or "")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()[:200]
    return cleaned or "Community events and activities"


def sanitize_name(raw: str | None) -> str:
    cleaned = re.sub(r"[^a-zA-Z\s]", "", raw or "")
    cleaned = re.sub(r"\s+", " ", cleaned).strip()[:50]
    if len(cleaned) < 3:
        raise BadRequestError("Name must be at least 3 characters long.")
    return cleaned


def sanitize_phone(raw: str | None) -> str:
    digits = re.sub(r"\D", "", raw or "")
    if digits.startswith("91") and len(digits) > 11:
        digits = digits[2:]
    if not 8 <= len(digits) <= 11:
        raise BadRequestError(
            f"Phone number must be between 8 and 11 digits. Got: {len(digits)} digits"
        )
    return digits


def extract_existing_account_id(description: str | None) -> str | None:
    """Pull the account id out of Razorpay's "email already exists" error."""
    match = _EXISTING_ACCOUNT_RE.search(description or "")
    return match.group(1) if match else None


def _is_duplicate_email(error: RazorpayError) -> bool:
    text = (error.description or "").lower()
    return "email already exists" in text


def _validate_profile(user: User, bank_details: Mapping[str, Any] | None) -> dict[str, str]:
    """Check the owner's profile and return the address as Razorpay wants it."""
    if not (user.street1 and user.city and user.state and user.postal_code):
        raise BadRequestError("Complete address information is required.")
    if not user.phone:
        raise BadRequestError("Phone number is required for KYC.")
    if not user.pan:
        raise BadRequestError("PAN number is required for KYC.")
    if not bank_details or not all(
        bank_details.get(key) for key in ("account_number", "ifsc", "beneficiary_name")
    ):
        raise BadRequestError("Bank account details are required for KYC.")

    postal_code = re.sub(r"\D", "", user.postal_code)
    if len(postal_code) != 6:
        raise BadRequestError("Postal code must be 6 digits.")
    city = user.city.strip()
    state = user.state.strip()
    if len(city) < 3:
        raise BadRequestError("City must be at least 3 characters long.")
    if len(state) < 3:
        raise BadRequestError("State must be at least 3 characters long.")

    street1 = user.street1.strip()
    street2 = (user.street2 or "").strip()
    if len(street1) < 10 and not street2:
        street1 = f"{street1}, {city}"
    if len(street1) < 10:
        raise BadRequestError(
            "Address must be at least 10 characters long. Please include area or landmark."
        )
    if len(street1) > 255:
        raise BadRequestError("Address must be less than 255 characters.")
    return {
        "street1": street1,
        "street2": street2,
        "city": city,
        "state": state,
        "postal_code": postal_code,
        "country": "IN",
    }


def _reference_id(community_id: str, now: datetime) -> str:
    millis = str(int(now.timestamp() * 1000))
    return f"{community_id.replace('-', '')[:12]}{millis[-8:]}"


def decode_document(document: Mapping[str, Any]) -> tuple[str, bytes, str]:
    """Validate an uploaded document and return ``(filename, content, mime)``."""
    mime_type = (document.get("mime_type") or "").lower()
    if mime_type not in DOCUMENT_MIME_TYPES:
        raise BadRequestError(
            f"Unsupported file type: {mime_type}. Use JPG/PNG/PDF",
            extra={"field": "document"},
        )
    raw = re.sub(r"\s", "", document.get("data") or "")
    try:
        content = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise BadRequestError(
            "Corrupt file data. Please re-upload the document.",
            extra={"field": "document"},
        ) from exc
    if len(content) > MAX_DOCUMENT_BYTES:
        raise BadRequestError(
            "Document too large. Max size is 2 MB.", extra={"field": "document"}
        )
    name = document.get("name") or "document"
    if not re.search(r"\.[a-z0-9]+$", name, re.IGNORECASE):
        extension = {"application/pdf": "pdf", "image/png": "png"}.get(mime_type, "jpg")
        name = f"{name}.{extension}"
    return name, content, mime_type


def _upload_document(
    session: Session,
    client: RazorpayClient,
    account: RazorpayAccount,
    *,
    document_type: str,
    sub_type: str,
    document: Mapping[str, Any],
) -> KycDocument:
    filename, content, mime_type = decode_document(document)
    record = KycDocument(
        community_id=account.community_id,
        razorpay_account_id=account.razorpay_account_id,
        stakeholder_id=account.stakeholder_id,
        document_type=document_type,
        document_name=filename,
    )
    session.add(record)
    try:
        client.upload_stakeholder_document(
            account.razorpay_account_id,
            account.stakeholder_id,
            document_type=document_type,
            sub_type=sub_type,
            filename=filename,
            content=content,
            mime_type=mime_type,
        )
    except RazorpayError as exc:
        record.upload_status = "failed"
        record.error_message = exc.description
        raise
    record.upload_status = "uploaded"
    record.uploaded_at = utcnow()
    logger.info("Uploaded %s for account %s", document_type, account.razorpay_account_id)
    return record


def _address_sub_type(document: Mapping[str, Any]) -> str:
    return "aadhaar_front" if document.get("kind") == "aadhaar" else "voter_id_front"


def _upload_required_documents(
    session: Session,
    client: RazorpayClient,
    account: RazorpayAccount,
    documents: Mapping[str, Any],
) -> None:
    try:
        products = client.list_products(account.razorpay_account_id)
    except RazorpayError as exc:
        logger.warning("Could not read product requirements: %s", exc.description)
        required: list[str] = ["individual_proof_of_address"]
    else:
        route = next((p for p in products if p.get("product_name") == "route"), {})
        required = list((route.get("requirements") or {}).get("documents") or [])

    pan_card = documents.get("panCard")
    if pan_card and "individual_proof_of_identification" in required:
        try:
            _upload_document(
                session,
                client,
                account,
                document_type="individual_proof_of_identification",
                sub_type="personal_pan",
                document=pan_card,
            )
        except RazorpayError as exc:
            if "personal_pan is/are not required" not in (exc.description or ""):
                raise
            logger.warning("PAN image not required for this account; skipping")
    elif pan_card:
        logger.info("PAN image not required by the route product; skipping upload")

    address_proof = documents.get("addressProof")
    if address_proof and "individual_proof_of_address" in required:
        _upload_document(
            session,
            client,
            account,
            document_type="individual_proof_of_address",
            sub_type=_address_sub_type(address_proof),
            document=address_proof,
        )
    elif address_proof:
        logger.info("Address proof not required by the route product; skipping upload")


def _settlements_configured(product: Mapping[str, Any]) -> bool:
    settlements = (product.get("config") or {}).get("settlements") or {}
    return bool(settlements.get("bank_account") or settlements.get("account_number"))


def _settlement_fields_due(product: Mapping[str, Any]) -> bool:
    due = (product.get("requirements") or {}).get("currently_due") or []
    return any(
        "settlements." in (item.get("field_reference") or "")
        for item in due
        if isinstance(item, dict)
    )


def map_provider_status(
    account_status: str | None,
    product_status: str | None,
    missing_fields: list[Any],
) -> str:
    """Collapse Razorpay account/product states into a local KYC status."""
    status = product_status or account_status
    if status == "activated":
        return KYC_ACTIVATED
    if status in ("rejected", "suspended"):
        return KYC_REJECTED
    if status == "needs_clarification" or missing_fields:
        return KYC_NEEDS_INFO
    return KYC_IN_PROGRESS


def _find_account(session: Session, community_id: str) -> RazorpayAccount | None:
    return session.scalars(
        select(RazorpayAccount).where(RazorpayAccount.community_id == community_id)
    ).first()


def _owner_community(session: Session, user: User) -> Community:
    community = session.scalars(
        select(Community).where(Community.owner_id == user.id)
    ).first()
    if not community:
        raise NotFoundError("Community not found")
    return community


def check_kyc_status(
    session: Session, client: RazorpayClient, user: User
) -> dict[str, Any]:
    """Refresh the caller's community KYC status from Razorpay."""
    community = _owner_community(session, user)
    account = _find_account(session, community.id)
    if not account:
        return {"kyc_status": community.kyc_status, "message": "No Razorpay account found"}

    try:
        remote = client.fetch_account(account.razorpay_account_id)
    except RazorpayError as exc:
        if exc.is_access_denied or exc.status == 400:
            logger.warning(
                "Account %s is not visible with the current keys: %s",
                account.razorpay_account_id,
                exc.description,
            )
            return {
                "kyc_status": KYC_NOT_STARTED,
                "message": (
                    "This KYC account was created in a different environment. "
                    "Please restart the KYC process."
                ),
                "needs_restart": True,
                "account_mismatch": True,
            }
        raise

    account_status = remote.get("status")
    product_status = None
    missing_fields: list[Any] = []
    requirement_errors: list[Any] = []
    requirements: dict[str, Any] = {}
    hosted_onboarding_required = False
    bank_configured = False
    if account.product_id:
        product = client.fetch_product(account.razorpay_account_id, account.product_id)
        product_status = product.get("activation_status")
        requirements = product.get("requirements") or {}
        missing_fields = list(requirements.get("currently_due") or [])
        requirement_errors = list(requirements.get("errors") or [])
        settlements_due = _settlement_fields_due(product)
        hosted_onboarding_required = settlements_due and not _settlements_configured(product)
        bank_configured = product_status == "activated" and not settlements_due

    status = map_provider_status(account_status, product_status, missing_fields)
    if status != account.kyc_status or community.kyc_status != status:
        logger.info(
            "KYC for community %s moved %s -> %s", community.id, account.kyc_status, status
        )
        set_kyc_status(account, community, status)
        account.products_activated = product_status == "activated"

    return {
        "kyc_status": status,
        "razorpay_account_id": account.razorpay_account_id,
        "account_status": account_status,
        "missing_fields": missing_fields,
        "requirement_errors": requirement_errors,
        "requirements": requirements,
        "hosted_onboarding_required": hosted_onboarding_required,
        "bank_configured": bank_configured,
    }


def _save_account(
    session: Session,
    community: Community,
    account_id: str,
    *,
    legal_name: str | None,
) -> RazorpayAccount:
    account = RazorpayAccount(
        community_id=community.id,
        razorpay_account_id=account_id,
        kyc_status=KYC_IN_PROGRESS,
        business_type="individual",
        legal_business_name=legal_name,
    )
    session.add(account)
    set_kyc_status(account, community, KYC_IN_PROGRESS)
    session.commit()
    return account


def _create_linked_account(
    session: Session,
    client: RazorpayClient,
    user: User,
    community: Community,
    address: dict[str, str],
    *,
    phone: str,
    legal_name: str,
) -> RazorpayAccount:
    payload = {
        "email": user.email.lower().strip(),
        "phone": phone,
        "type": "route",
        "reference_id": _reference_id(community.id, utcnow()),
        "legal_business_name": legal_name,
        "business_type": "individual",
        "contact_name": legal_name,
        "profile": {
            "category": "others",
            "subcategory": "others",
            "description": sanitize_description(
                community.description or f"{community.name} Community Events"
            ),
            "addresses": {"registered": address},
        },
    }
    try:
        created = client.create_account(payload)
    except RazorpayError as exc:
        if exc.status in (401, 403):
            raise BadRequestError(
                "Razorpay authentication failed. Please verify your API credentials "
                "are correct and have the Route (Connected Accounts) feature enabled.",
                code="PaymentProviderAuth",
            ) from exc
        if not _is_duplicate_email(exc):
            raise
        existing_id = extract_existing_account_id(exc.description)
        if not existing_id:
            raise BadRequestError(
                "This email is already associated with a Razorpay account but we "
                "could not identify it. Please contact support."
            ) from exc
        logger.info("Adopting existing Razorpay account %s", existing_id)
        return _save_account(session, community, existing_id, legal_name=legal_name)
    logger.info("Created Razorpay account %s for %s", created.get("id"), community.id)
    return _save_account(session, community, created["id"], legal_name=legal_name)


def _ensure_stakeholder(
    client: RazorpayClient,
    account: RazorpayAccount,
    user: User,
    address: dict[str, str],
    *,
    phone: str,
    name: str,
) -> bool:
    """Attach a stakeholder to the account; ``False`` if the account is locked to us."""
    if account.stakeholder_id:
        return True
    try:
        stakeholders = client.list_stakeholders(account.razorpay_account_id)
    except RazorpayError as exc:
        if exc.status in (401, 403):
            return False
        stakeholders = []
        logger.warning("Could not list stakeholders: %s", exc.description)
    if stakeholders:
        account.stakeholder_id = stakeholders[0].get("id")
        return True
    payload = {
        "name": name,
        "email": user.email.lower().strip(),
        "phone": {"primary": phone, "secondary": ""},
        "percentage_ownership": 100,
        "relationship": {"director": False, "executive": True},
        "kyc": {"pan": user.pan.strip()},
        "addresses": {
            "residential": {
                "street": address["street1"],
                "city": address["city"],
                "state": address["state"],
                "postal_code": address["postal_code"],
                "country": "IN",
            }
        },
    }
    try:
        stakeholder = client.create_stakeholder(account.razorpay_account_id, payload)
    except RazorpayError as exc:
        if exc.is_access_denied or exc.status == 403:
            return False
        raise
    account.stakeholder_id = stakeholder.get("id")
    return True


def _store_bank_details(
    account: RazorpayAccount, bank_details: Mapping[str, Any]
) -> None:
    masked = mask_account_number(bank_details["account_number"])
    account.bank_account_number = masked
    account.bank_masked = masked
    account.bank_ifsc = bank_details["ifsc"]
    account.bank_beneficiary_name = bank_details["beneficiary_name"]
    account.tnc_accepted = True
    account.tnc_accepted_at = utcnow()
    account.products_requested = True


def _configure_route_product(
    client: RazorpayClient,
    account: RazorpayAccount,
    community: Community,
    bank_details: Mapping[str, Any],
) -> dict[str, Any]:
    account_id = account.razorpay_account_id
    try:
        client.update_account(
            account_id,
            {
                "bank_account": {
                    "ifsc_code": bank_details["ifsc"],
                    "account_number": bank_details["account_number"],
                    "beneficiary_name": bank_details["beneficiary_name"],
                }
            },
            idempotency_key=f"showya_{community.id}_acc_bank",
        )
    except RazorpayError as exc:
        logger.warning("Account bank update failed (non-fatal): %s", exc.description)

    product = client.request_product(
        account_id,
        {
            "product_name": "route",
            "tnc_accepted": True,
            "settlements": {
                "account_number": bank_details["account_number"],
                "ifsc_code": bank_details["ifsc"],
                "beneficiary_name": bank_details["beneficiary_name"],
            },
        },
        idempotency_key=f"showya_{community.id}_prd_request_route",
    )
    account.product_id = product_id = product["id"]
    details = client.fetch_product(account_id, product_id)

    if not _settlements_configured(details) and not details.get("settlements"):
        try:
            client.update_product(
                account_id,
                product_id,
                {
                    "settlements": {
                        "bank_account": {
                            "name": bank_details["beneficiary_name"],
                            "ifsc": bank_details["ifsc"],
                            "account_number": bank_details["account_number"],
                        }
                    },
                    "tnc_accepted": True,
                },
                idempotency_key=f"showya_{community.id}_prd_{product_id}_settlement",
            )
        except RazorpayError as exc:
            logger.warning("Product settlement update failed (non-fatal): %s", exc.description)

    return client.fetch_product(account_id, product_id)


def start_kyc(
    session: Session,
    client: RazorpayClient,
    user: User,
    community_id: str,
    *,
    bank_details: Mapping[str, Any] | None = None,
    documents: Mapping[str, Any] | None = None,
    check_only: bool = False,
    client_ip: str | None = None,
) -> dict[str, Any]:
    """Create or resume the community's linked account and request payouts."""
    community = get_owned_community(session, user, community_id)
    account = _find_account(session, community.id)

    if account:
        status = account.kyc_status
        if status == KYC_ACTIVATED:
            return {"success": True, "message": "KYC already verified", "kyc_status": status}
        if status in (KYC_PENDING, KYC_VERIFIED):
            return {
                "action": "wait",
                "message": "Your KYC is currently under review. You'll be notified once verified.",
                "kyc_status": status,
                "onboarding_url": dashboard_onboarding_url(account.razorpay_account_id),
            }
        if status == KYC_IN_PROGRESS and check_only:
            return {
                "action": "proceed",
                "message": "Please complete your KYC details",
                "existingAccount": True,
            }
        if status == KYC_REJECTED:
            logger.info("Discarding rejected account %s", account.razorpay_account_id)
            session.delete(account)
            session.flush()
            account = None

    if check_only:
        return {
            "action": "proceed",
            "message": "No existing account found. Please provide KYC details.",
            "existingAccount": False,
        }

    address = _validate_profile(user, bank_details)
    if not client.configured:
        raise BadRequestError("Razorpay credentials missing. Please contact support.")
    phone = sanitize_phone(user.phone)
    name = sanitize_name(user.name or "Community Owner")
    logger.info("Starting KYC for community %s from %s", community.id, client_ip or "unknown ip")

    if account is None:
        account = _create_linked_account(
            session, client, user, community, address, phone=phone, legal_name=name
        )

    if not _ensure_stakeholder(client, account, user, address, phone=phone, name=name):
        onboarding_url = dashboard_onboarding_url(account.razorpay_account_id)
        set_kyc_status(
            account,
            community,
            KYC_PENDING,
            error_reason="Account requires manual KYC completion in Razorpay dashboard",
        )
        account.onboarding_url = onboarding_url
        return {
            "action": "manual_setup",
            "message": (
                "Your Razorpay account exists but requires manual completion. "
                "Please complete KYC in your Razorpay dashboard."
            ),
            "onboarding_url": onboarding_url,
            "razorpay_account_id": account.razorpay_account_id,
        }

    if documents and account.stakeholder_id:
        _upload_required_documents(session, client, account, documents)

    product = _configure_route_product(client, account, community, bank_details)
    _store_bank_details(account, bank_details)

    if not _settlements_configured(product) and _settlement_fields_due(product):
        onboarding_url = None
        try:
            remote = client.fetch_account(account.razorpay_account_id)
        except RazorpayError as exc:
            logger.warning("Could not fetch onboarding url: %s", exc.description)
        else:
            onboarding_url = remote.get("activation_url") or remote.get("onboarding_url")
        account.onboarding_url = onboarding_url
        account.products_activated = False
        set_kyc_status(account, community, KYC_NEEDS_INFO)
        return {
            "success": False,
            "action": "hosted_onboarding_required",
            "kyc_status": KYC_NEEDS_INFO,
            "onboarding_url": onboarding_url,
            "message": (
                'Bank details must be completed on Razorpay. Click "Complete Bank Setup" '
                "to continue."
            ),
        }

    status = PRODUCT_ACTIVATION_STATUS.get(product.get("activation_status"), KYC_IN_PROGRESS)
    account.onboarding_url = None
    account.products_activated = status == KYC_ACTIVATED
    set_kyc_status(account, community, status)
    logger.info("KYC flow for community %s finished with %s", community.id, status)

    if status == KYC_ACTIVATED:
        message = "KYC approved! Payouts enabled."
    elif status == KYC_PENDING:
        message = "Your details are under review. You'll be notified once verified."
    else:
        message = "KYC submitted. Please check status."
    return {
        "success": True,
        "razorpay_account_id": account.razorpay_account_id,
        "kyc_status": status,
        "message": message,
    }


def update_kyc(
    session: Session,
    client: RazorpayClient,
    user: User,
    community_id: str,
    update_type: str,
    data: Mapping[str, Any],
) -> dict[str, Any]:
    """Push corrected KYC details to Razorpay and put the account back in review."""
    community = get_owned_community(session, user, community_id)
    account = _find_account(session, community.id)
    if not account:
        raise NotFoundError("No Razorpay account found")
    account_id = account.razorpay_account_id

    if update_type == "address":
        result = client.update_account(
            account_id,
            {
                "profile": {
                    "addresses": {
                        "registered": {
                            "street1": data.get("street1"),
                            "street2": data.get("street2") or "",
                            "city": data.get("city"),
                            "state": data.get("state"),
                            "postal_code": data.get("postal_code"),
                            "country": "IN",
                        }
                    }
                }
            },
        )
    elif update_type == "stakeholder":
        if not account.stakeholder_id:
            raise BadRequestError("No stakeholder found")
        payload: dict[str, Any] = {}
        if data.get("name"):
            payload["name"] = data["name"]
        if data.get("pan"):
            payload["kyc"] = {"pan": data["pan"]}
        if data.get("addresses"):
            payload["addresses"] = data["addresses"]
        result = client.update_stakeholder(account_id, account.stakeholder_id, payload)
    elif update_type == "bank":
        if not account.product_id:
            raise BadRequestError("No product found")
        result = client.update_product(
            account_id,
            account.product_id,
            {
                "settlements": {
                    "account_number": data.get("account_number"),
                    "ifsc_code": data.get("ifsc"),
                    "beneficiary_name": data.get("beneficiary_name"),
                },
                "tnc_accepted": True,
            },
        )
        account.bank_account_number = mask_account_number(data.get("account_number"))
        account.bank_masked = account.bank_account_number
        account.bank_ifsc = data.get("ifsc")
        account.bank_beneficiary_name = data.get("beneficiary_name")
    elif update_type == "documents":
        if not account.stakeholder_id:
            raise BadRequestError("No stakeholder found")
        uploaded = []
        for key, document_type in (
            ("panCard", "individual_proof_of_identification"),
            ("addressProof", "individual_proof_of_address"),
        ):
            document = data.get(key)
            if not document:
                continue
            sub_type = (
                "personal_pan" if key == "panCard" else _address_sub_type(document)
            )
            try:
                _upload_document(
                    session,
                    client,
                    account,
                    document_type=document_type,
                    sub_type=sub_type,
                    document=document,
                )
            except RazorpayError as exc:
                logger.error("%s upload failed: %s", document_type, exc.description)
                continue
            uploaded.append(document_type)
        result = {"documents": uploaded}
    else:
        raise BadRequestError(f"Unknown update type: {update_type}")

    try:
        client.request_product(account_id, {"product_name": "route", "tnc_accepted": True})
    except RazorpayError as exc:
        logger.info("Route product request after update: %s", exc.description)

    set_kyc_status(account, community, KYC_PENDING)
    return {"success": True, "message": "KYC data updated successfully", "result": result}


def reset_kyc(session: Session, user: User, community_id: str) -> dict[str, Any]:
    """Forget the community's linked account so onboarding can start over."""
    community = get_owned_community(session, user, community_id)
    account = _find_account(session, community.id)
    set_kyc_status(None, community, KYC_NOT_STARTED)
    if not account:
        return {
            "success": True,
            "message": "No KYC account found. You can start fresh.",
            "kyc_status": KYC_NOT_STARTED,
        }
    logger.info("Resetting KYC account %s", account.razorpay_account_id)
    session.execute(delete(KycDocument).where(KycDocument.community_id == community.id))
    session.delete(account)
    for field in ("phone", "street1", "street2", "city", "state", "postal_code", "pan", "dob"):
        setattr(user, field, None)
    return {
        "success": True,
        "message": "KYC has been reset. You can now start fresh.",
        "kyc_status": KYC_NOT_STARTED,
    }


def apply_account_webhook(
    session: Session, event_name: str, entity: Mapping[str, Any]
) -> bool:
    """Apply an ``account.*`` webhook to the matching payment account."""
    status = KYC_WEBHOOK_STATUS.get(event_name)
    account_id = entity.get("id")
    if status is None or not account_id:
        return False
    account = session.scalars(
        select(RazorpayAccount).where(RazorpayAccount.razorpay_account_id == account_id)
    ).first()
    if not account:
        logger.warning("Webhook %s for unknown account %s", event_name, account_id)
        return False

    error_reason = None
    if status == KYC_NEEDS_INFO:
        error_reason = entity.get("error_reason") or "Additional information required"
    elif status == KYC_REJECTED:
        error_reason = entity.get("error_reason") or "KYC verification rejected"
    set_kyc_status(account, account.community, status)
    account.error_reason = error_reason

    bank = (entity.get("settlements") or {}).get("bank_account") or entity.get("bank_account")
    if isinstance(bank, dict) and bank.get("ifsc_code"):
        account.bank_masked = mask_ifsc(bank["ifsc_code"])
    if status == KYC_ACTIVATED:
        account.products_activated = True
    logger.info("Account %s is now %s via %s", account_id, status, event_name)
    return True
