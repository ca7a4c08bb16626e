"""Event type constants for Steeple."""

# Authorization server
AUTHORIZE_LOGIN_REDIRECT = "authorize_login_redirect"
AUTHORIZE_DENIED = "authorize_denied"
CODE_ISSUED = "code_issued"
TOKEN_ISSUED = "token_issued"
TOKEN_EXCHANGE_FAILED = "token_exchange_failed"
STATE_REJECTED = "state_rejected"

# Identity resolution
BEARER_REJECTED = "bearer_rejected"

# Directory writes
ENTITY_WRITTEN = "entity_written"
