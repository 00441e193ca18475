"""
Payment Method Field Schema
Structural validation of the payment-method descriptors attached to a hold.

Each descriptor looks like {"method": "paypal", "fields": {"email": "..."}}.
Required fields must be non-blank; optional ones may be omitted. Unknown field
names are dropped so arbitrary client payloads never reach storage.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from utils.exception_handler import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MethodField:
    name: str
    label: str
    optional: bool = False


@dataclass(frozen=True)
class PaymentMethodSpec:
    value: str
    label: str
    fields: Tuple[MethodField, ...]


PAYMENT_METHODS: Dict[str, PaymentMethodSpec] = {
    spec.value: spec
    for spec in (
        PaymentMethodSpec("bank_transfer", "Bank Transfer", (
            MethodField("accountName", "Account Holder Name"),
            MethodField("accountNumber", "Account Number / IBAN"),
            MethodField("bankName", "Bank Name"),
            MethodField("swiftCode", "SWIFT / BIC", optional=True),
            MethodField("routingNumber", "Routing / Branch Number", optional=True),
        )),
        PaymentMethodSpec("mobile_money", "Mobile Money", (
            MethodField("provider", "Provider"),
            MethodField("phoneNumber", "Registered Phone Number"),
            MethodField("accountName", "Account Name"),
        )),
        PaymentMethodSpec("paypal", "PayPal", (
            MethodField("email", "PayPal Email"),
        )),
        PaymentMethodSpec("cashapp", "Cash App", (
            MethodField("cashtag", "Cashtag"),
            MethodField("accountName", "Account Name", optional=True),
        )),
        PaymentMethodSpec("wise", "Wise (TransferWise)", (
            MethodField("email", "Wise Email"),
            MethodField("fullName", "Full Name"),
            MethodField("reference", "Reference", optional=True),
        )),
        PaymentMethodSpec("upi", "UPI (India)", (
            MethodField("upiId", "UPI ID"),
            MethodField("accountName", "Account Name"),
        )),
        PaymentMethodSpec("crypto_wallet", "Crypto Wallet", (
            MethodField("network", "Network / Chain"),
            MethodField("address", "Wallet Address"),
        )),
        PaymentMethodSpec("other", "Other / Custom", (
            MethodField("instructions", "Payment Instructions"),
        )),
    )
}


def _is_filled(value: Any) -> bool:
    if isinstance(value, str):
        return bool(value.strip())
    return value is not None and value is not False


def validate_payment_methods(payment_methods: Any) -> List[Dict[str, Any]]:
    """Validate and normalise a list of payment-method descriptors"""
    if not isinstance(payment_methods, list) or not payment_methods:
        raise ValidationError("At least one payment method with required details is required")

    normalized = []
    for index, entry in enumerate(payment_methods):
        if not isinstance(entry, dict):
            raise ValidationError(f"Payment method #{index + 1} must be an object")

        method = str(entry.get("method") or "").strip()
        spec = PAYMENT_METHODS.get(method)
        if spec is None:
            raise ValidationError(
                f"Payment method #{index + 1}: please select a valid payment method",
                details={"field": f"paymentMethods[{index}].method", "allowed": sorted(PAYMENT_METHODS)},
            )

        raw_fields = entry.get("fields") or {}
        if not isinstance(raw_fields, dict):
            raise ValidationError(f"Payment method #{index + 1}: fields must be an object")

        fields = {}
        for field in spec.fields:
            value = raw_fields.get(field.name)
            if not _is_filled(value):
                if field.optional:
                    continue
                raise ValidationError(
                    f"Fill in all required fields for {spec.label}: {field.label} is required",
                    details={"field": f"paymentMethods[{index}].fields.{field.name}"},
                )
            fields[field.name] = value.strip() if isinstance(value, str) else value

        normalized.append({"method": spec.value, "fields": fields})

    logger.debug(f"PAYMENT_METHODS_VALID: {[item['method'] for item in normalized]}")
    return normalized
