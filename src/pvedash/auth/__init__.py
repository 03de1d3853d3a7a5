"""Dashboard credentials.

Learn: The live channel and the aggregator both need the dashboard's
bearer token. Instead of a process-wide auth singleton, a TokenStore is
built once and handed to every component that needs it. Anything that
satisfies the CredentialSource protocol works — tests use a TokenStore
with a fixed token.
"""

from pvedash.auth.credentials import CredentialSource, TokenStore

__all__ = ["CredentialSource", "TokenStore"]
