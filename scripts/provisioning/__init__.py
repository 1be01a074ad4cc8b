"""Storefront admin provisioning.

Ensures the prerequisite role tables exist in PostgreSQL and converges one
identity's admin role across the relational ``user_roles`` table and the
identity provider's metadata record, then verifies both stores.
"""
