"""Resolve an operator-supplied reference to a canonical identity.

A UUID is treated as an identity key and looked up with the identity
provider. An email is matched against the ``profiles`` table; it must match
exactly one profile, since picking the first of several would grant the
role to an arbitrary account.

A miss is ``IdentityNotFound``; a store or provider failure during the
lookup is ``IdentityLookupError``.
"""

from __future__ import annotations

import logging
import uuid

from scripts.provisioning.db import Database
from scripts.provisioning.errors import (
    IdentityLookupError,
    IdentityNotFound,
    IdentityProviderError,
    StoreError,
)
from scripts.provisioning.identity_provider import IdentityProviderClient
from scripts.provisioning.models import Identity

logger = logging.getLogger("provisioning.identity_resolver")


def _as_identity_key(reference: str) -> str | None:
    try:
        return str(uuid.UUID(reference))
    except ValueError:
        return None


def normalize_reference(reference: str) -> str:
    """Canonical spelling of a reference: hyphenated lower-case key or lower-case email."""
    reference = reference.strip()
    return _as_identity_key(reference) or reference.lower()


class IdentityResolver:
    def __init__(self, db: Database, identity_provider: IdentityProviderClient) -> None:
        self.db = db
        self.identity_provider = identity_provider

    def resolve(self, reference: str) -> Identity:
        reference = reference.strip()
        key = _as_identity_key(reference)
        if key is not None:
            return self._by_key(key, reference)
        if "@" in reference:
            return self._by_key(self._key_for_email(reference), reference)
        raise IdentityNotFound(
            f"{reference!r} is neither an identity key nor an email",
            operation="identity.resolve",
            identity=reference,
        )

    def _key_for_email(self, email: str) -> str:
        try:
            with self.db.transaction() as cur:
                # LIMIT 2 is enough to tell unique from ambiguous
                cur.execute(
                    "SELECT id FROM profiles WHERE lower(email) = lower(%s) LIMIT 2",
                    (email,),
                )
                rows = cur.fetchall()
        except StoreError as exc:
            raise IdentityLookupError(
                f"Profile lookup for {email} failed: {exc}",
                operation="identity.lookup_email",
                identity=email,
                cause=exc,
            ) from exc

        if len(rows) != 1:
            reason = "no profile" if not rows else "more than one profile"
            raise IdentityNotFound(
                f"Email {email} matches {reason}",
                operation="identity.lookup_email",
                identity=email,
            )
        logger.debug("Email matched profile %s", rows[0][0], extra={"identity": email})
        return str(rows[0][0])

    def _by_key(self, key: str, reference: str) -> Identity:
        try:
            identity = self.identity_provider.get_identity_by_id(key)
        except IdentityProviderError as exc:
            raise IdentityLookupError(
                f"Identity provider lookup for {key} failed: {exc}",
                operation="identity.lookup_key",
                identity=reference,
                cause=exc,
            ) from exc
        if identity is None:
            raise IdentityNotFound(
                f"No identity with key {key}",
                operation="identity.lookup_key",
                identity=reference,
            )
        logger.info("Resolved %s to %s", reference, identity.key, extra={"identity": identity.key})
        return identity
