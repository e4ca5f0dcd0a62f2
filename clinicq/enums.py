from enum import Enum


class AppointmentStatus(str, Enum):
    """Lifecycle states of a queued appointment."""

    scheduled = "scheduled"
    start = "start"
    hold = "hold"
    pause = "pause"
    cancel = "cancel"
    completed = "completed"
    no_show = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    AppointmentStatus.completed,
    AppointmentStatus.cancel,
    AppointmentStatus.no_show,
})

# Statuses that still take part in the live queue projection
ACTIVE_QUEUE_STATUSES = frozenset({
    AppointmentStatus.scheduled,
    AppointmentStatus.start,
})


class WalletTransactionType(str, Enum):
    appointment_payment = "appointment_payment"
    refund_full = "refund_full"
    refund_partial = "refund_partial"
    admin_credit = "admin_credit"
    admin_debit = "admin_debit"
    wallet_topup = "wallet_topup"

    @property
    def is_credit(self) -> bool:
        return self in CREDIT_TRANSACTION_TYPES


CREDIT_TRANSACTION_TYPES = frozenset({
    WalletTransactionType.refund_full,
    WalletTransactionType.refund_partial,
    WalletTransactionType.admin_credit,
    WalletTransactionType.wallet_topup,
})


class RefundType(str, Enum):
    full = "full"
    partial = "partial"
