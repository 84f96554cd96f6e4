"""
Viewer identity verification.

Viewers present a Google-signed ID token as `Authorization: Bearer <jwt>`.
The token is accepted when its signature checks out against Google's
published keys, it was issued by Google, it has not expired, it was minted
for our OAuth client, and its e-mail is listed in the accounts file.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

import jwt

GOOGLE_CERTS_URL = "https://www.googleapis.com/oauth2/v3/certs"
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class AuthError(Exception):
    """Raised when a request cannot be tied to a permitted account."""
    pass


@dataclass(frozen=True)
class Identity:
    email: str
    first_name: str = ""
    last_name: str = ""


ANONYMOUS = Identity(email="anonymous")


def extract_bearer_token(headers) -> str:
    """Pull the token out of an `Authorization: Bearer ...` header."""
    value = headers.get("Authorization", "")
    if not value:
        raise AuthError("Authorization header missing")
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Bearer token missing")
    return token.strip()


def load_accounts(path: str) -> frozenset:
    """
    Read permitted e-mail addresses, one per line.
    Blank lines and lines starting with '#' are ignored.
    """
    text = Path(path).read_text(encoding="utf-8")
    accounts = set()
    for line in text.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            accounts.add(line.lower())
    return frozenset(accounts)


class AllowAll:
    """Verifier used when authentication is disabled."""

    def verify(self, headers) -> Identity:
        return ANONYMOUS


class GoogleVerifier:
    """
    Verifies Google ID tokens against an allow-list of e-mails.

    Usage:
        verifier = GoogleVerifier(client_id, load_accounts("accounts"))
        identity = verifier.verify(request.headers)  # raises AuthError
    """

    def __init__(
        self,
        client_id: str,
        accounts: Iterable[str],
        key_resolver: Optional[Callable[[str], object]] = None,
        leeway: float = 0.0
    ):
        self.client_id = client_id
        self.accounts = frozenset(a.lower() for a in accounts)
        self.leeway = leeway
        if key_resolver is None:
            jwks = jwt.PyJWKClient(GOOGLE_CERTS_URL, cache_keys=True)

            def key_resolver(token):
                return jwks.get_signing_key_from_jwt(token).key
        self._resolve_key = key_resolver

    def verify(self, headers) -> Identity:
        token = extract_bearer_token(headers)

        try:
            key = self._resolve_key(token)
            claims = jwt.decode(
                token,
                key,
                algorithms=["RS256"],
                audience=self.client_id or None,
                leeway=self.leeway,
                options={"require": ["exp", "iss"], "verify_aud": bool(self.client_id)}
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthError("JWT is expired") from e
        except jwt.PyJWTError as e:
            raise AuthError(f"Invalid Google JWT: {e}") from e

        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise AuthError("iss is invalid")

        email = str(claims.get("email", "")).lower()
        if not email or not claims.get("email_verified", False):
            raise AuthError("email is not verified")
        if email not in self.accounts:
            raise AuthError("user is invalid")

        return Identity(
            email=email,
            first_name=claims.get("given_name", ""),
            last_name=claims.get("family_name", "")
        )
