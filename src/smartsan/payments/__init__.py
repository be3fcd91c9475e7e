"""Booking payment initiation and reconciliation."""

from smartsan.payments.poller import PaymentPoller
from smartsan.payments.reconciler import BookingCreated, PaymentReconciler

__all__ = ["BookingCreated", "PaymentPoller", "PaymentReconciler"]
