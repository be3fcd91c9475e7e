"""Internal constants shared across the library."""

PROVIDER_SANDBOX_URL = "https://sandbox.intasend.com/api/v1"
PROVIDER_LIVE_URL = "https://payment.intasend.com/api/v1"
USER_AGENT = "smartsan/0.1"

STK_PUSH_ENDPOINT = "/payment/mpesa-stk-push/"
PAYMENT_STATUS_ENDPOINT = "/payment/status/"
CHECKOUT_ENDPOINT = "/checkout/"

# Provider payment states. Only COMPLETE and FAILED are terminal.
PROVIDER_STATE_COMPLETE = "COMPLETE"
PROVIDER_STATE_FAILED = "FAILED"
PROVIDER_TERMINAL_STATES: frozenset[str] = frozenset({PROVIDER_STATE_COMPLETE, PROVIDER_STATE_FAILED})

API_PREFIX = "/api/v1"
