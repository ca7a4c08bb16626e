"""Bearer identities and the self-hosted OAuth 2.1 authorization server."""
