"""Classification of free-text payment method strings.

Courier apps, admins and the Shopify import all write whatever they like into
``payment_method`` / ``payment_sub_type`` / ``collected_by``.  Everything that
aggregates money goes through :func:`normalize` so that a single closed set of
channels (:class:`~delivery_service.db.models.PaymentChannel`) is reported.

Rules are evaluated top to bottom and the first match wins.  The order is
significant: accounting-collector aliases must beat card markers, and
``valu`` must beat everything that follows it.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Sequence

from delivery_service.config import settings
from delivery_service.db.models import SPLIT_SUB_TYPE, PaymentChannel

__all__ = [
    "NormalizationRule",
    "PaymentMethodNormalizer",
    "default_normalizer",
    "normalize",
    "display_channel",
]

LOGGER = logging.getLogger(__name__)

_WORD_SPLIT_RE = re.compile(r"[^0-9a-z؀-ۿ]+")

CARD_MARKERS: tuple[str, ...] = (
    "paymob",
    "pay mob",
    "باي موب",
    "visa",
    "mastercard",
    "card",
    "credit",
    "debit",
)


@dataclass(slots=True, frozen=True)
class NormalizationRule:
    name: str
    predicate: Callable[[str], bool]
    channel: PaymentChannel


def _tokens(value: str) -> set[str]:
    return {token for token in _WORD_SPLIT_RE.split(value) if token}


def _equals(*options: str) -> Callable[[str], bool]:
    choices = frozenset(options)
    return lambda value: value in choices


def _contains_any(*markers: str) -> Callable[[str], bool]:
    return lambda value: any(marker in value for marker in markers)


def _has_token(markers: Iterable[str]) -> Callable[[str], bool]:
    wanted = frozenset(marker.lower() for marker in markers)
    return lambda value: bool(wanted & _tokens(value))


def build_rules(collector_markers: Sequence[str]) -> tuple[NormalizationRule, ...]:
    """Return the ordered rule table for the given accounting aliases."""
    return (
        NormalizationRule("accounting_collector", _has_token(collector_markers), PaymentChannel.ON_HAND),
        NormalizationRule("valu", _contains_any("valu"), PaymentChannel.VALU),
        NormalizationRule("visa_machine", _equals("visa_machine"), PaymentChannel.VISA_MACHINE),
        NormalizationRule("instapay", _equals("instapay"), PaymentChannel.INSTAPAY),
        NormalizationRule("wallet", _equals("wallet"), PaymentChannel.WALLET),
        NormalizationRule("on_hand", _equals("on_hand", "on hand"), PaymentChannel.ON_HAND),
        NormalizationRule("card_gateway", _contains_any(*CARD_MARKERS), PaymentChannel.PAYMOB),
        NormalizationRule(
            "cash",
            lambda value: value in {"cash", "cod", "cash_on_delivery"} or "cash on delivery" in value,
            PaymentChannel.CASH,
        ),
    )


class PaymentMethodNormalizer:
    """Ordered first-match classifier for payment method strings."""

    def __init__(self, rules: Sequence[NormalizationRule]) -> None:
        self._rules = tuple(rules)

    @classmethod
    def from_markers(cls, collector_markers: Sequence[str]) -> "PaymentMethodNormalizer":
        return cls(build_rules(collector_markers))

    @property
    def rules(self) -> tuple[NormalizationRule, ...]:
        return self._rules

    def normalize(self, raw: Any) -> PaymentChannel:
        value = str(raw).strip().lower() if raw is not None else ""
        if not value:
            return PaymentChannel.OTHER
        for rule in self._rules:
            if rule.predicate(value):
                return rule.channel
        if value != PaymentChannel.OTHER.value:
            LOGGER.warning("payment_method_unrecognized: raw=%r", raw)
        return PaymentChannel.OTHER

    def display_channel(
        self,
        *,
        payment_method: Any,
        payment_sub_type: Any = None,
        collected_by: Any = None,
    ) -> str:
        """Label shown for an order.

        The courier-chosen sub type wins (unless it is the split sentinel),
        then the raw collector name, then the normalized payment method.
        """
        if payment_sub_type and payment_sub_type != SPLIT_SUB_TYPE:
            return self.normalize(payment_sub_type).value
        if collected_by:
            return str(collected_by)
        return self.normalize(payment_method).value


default_normalizer = PaymentMethodNormalizer.from_markers(settings.accounting_collector_markers)


def normalize(raw: Any) -> PaymentChannel:
    return default_normalizer.normalize(raw)


def display_channel(order: Any) -> str:
    """:meth:`PaymentMethodNormalizer.display_channel` for a snapshot or ORM row."""
    return default_normalizer.display_channel(
        payment_method=getattr(order, "payment_method", None),
        payment_sub_type=getattr(order, "payment_sub_type", None),
        collected_by=getattr(order, "collected_by", None),
    )
