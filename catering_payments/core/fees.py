"""
Admin fee and payment method policy.

Small charges go through QRIS with a percentage fee, larger ones through
bank transfer / virtual account with a flat fee. The policy is pure: the
same base amount and constants always give the same quote.
"""
import math
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Tuple

from catering_payments.config import Settings


class PaymentMethod(str, Enum):
    """Payment method tags stored in ``orders.payment_method``."""

    QRIS = "qris"
    BANK_TRANSFER = "bank_transfer"


# Gateway channel codes enabled for each method
QRIS_CHANNELS: Tuple[str, ...] = ("other_qris",)
VIRTUAL_ACCOUNT_CHANNELS: Tuple[str, ...] = (
    "bank_transfer",
    "bca_va",
    "bni_va",
    "bri_va",
    "permata_va",
    "cimb_va",
)


@dataclass(frozen=True)
class FeeQuote:
    """Fee, method and display label for one base amount."""

    fee: int
    method: str
    fee_label: str

    @property
    def enabled_payments(self) -> Tuple[str, ...]:
        return channels_for(self.method)


def channels_for(method: str) -> Tuple[str, ...]:
    """Gateway channels allowed for a payment method."""
    if method == PaymentMethod.QRIS.value:
        return QRIS_CHANNELS
    return VIRTUAL_ACCOUNT_CHANNELS


def format_rupiah(amount: int) -> str:
    """Format an amount the way id-ID locales do, e.g. ``Rp 4.400``."""
    return "Rp " + f"{amount:,}".replace(",", ".")


def format_percentage(percentage: Decimal) -> str:
    return f"{percentage.normalize():f}%"


@dataclass(frozen=True)
class FeePolicy:
    """Threshold and fee constants; ``quote`` is the policy itself."""

    qris_max_amount: int = 628000
    qris_fee_percentage: Decimal = Decimal("0.7")
    va_fee_flat: int = 4400

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeePolicy":
        return cls(
            qris_max_amount=settings.qris_max_amount,
            qris_fee_percentage=Decimal(str(settings.qris_fee_percentage)),
            va_fee_flat=settings.va_fee_flat,
        )

    @property
    def percentage_label(self) -> str:
        return format_percentage(self.qris_fee_percentage)

    @property
    def flat_label(self) -> str:
        return format_rupiah(self.va_fee_flat)

    def quote(self, base_amount: int) -> FeeQuote:
        """
        Compute the admin fee and payment method for a base amount.

        Args:
            base_amount: Sum of the order totals, in whole rupiah

        Returns:
            FeeQuote: QRIS with a ceiling-rounded percentage fee at or below
            the threshold, bank transfer with the flat fee above it
        """
        if base_amount <= self.qris_max_amount:
            fee = math.ceil(Decimal(base_amount) * self.qris_fee_percentage / 100)
            return FeeQuote(
                fee=fee,
                method=PaymentMethod.QRIS.value,
                fee_label=self.percentage_label,
            )
        return FeeQuote(
            fee=self.va_fee_flat,
            method=PaymentMethod.BANK_TRANSFER.value,
            fee_label=self.flat_label,
        )

    def label_for_method(self, method: str) -> str:
        """Display label for a stored payment method."""
        if method == PaymentMethod.QRIS.value:
            return self.percentage_label
        return self.flat_label


@dataclass(frozen=True)
class PaymentInfo:
    """Amount breakdown reported back to the storefront."""

    base_amount: int
    admin_fee: int
    payment_method: str
    fee_type: str

    @property
    def total_amount(self) -> int:
        return self.base_amount + self.admin_fee

    @classmethod
    def from_quote(cls, base_amount: int, quote: FeeQuote) -> "PaymentInfo":
        return cls(
            base_amount=base_amount,
            admin_fee=quote.fee,
            payment_method=quote.method,
            fee_type=quote.fee_label,
        )

    def to_dict(self) -> dict:
        return {
            "baseAmount": self.base_amount,
            "adminFee": self.admin_fee,
            "totalAmount": self.total_amount,
            "paymentMethod": self.payment_method,
            "feeType": self.fee_type,
        }
