"""Static, versioned table definitions ensured before provisioning.

Every DDL statement uses CREATE ... IF NOT EXISTS so that re-issuing it,
including from a concurrent run, neither errors nor touches existing rows.
Bump ``version`` whenever a definition changes; existing tables are never
altered here.
"""

from __future__ import annotations

from scripts.provisioning.models import SchemaTable

USER_ROLES = SchemaTable(
    name="user_roles",
    version=1,
    ddl="""
    CREATE TABLE IF NOT EXISTS user_roles (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
        role TEXT NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        UNIQUE (user_id, role)
    )
    """,
)

CART_ITEMS = SchemaTable(
    name="cart_items",
    version=1,
    ddl="""
    CREATE TABLE IF NOT EXISTS cart_items (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id UUID NOT NULL REFERENCES auth.users(id) ON DELETE CASCADE,
        product_id UUID NOT NULL,
        product_name TEXT NOT NULL,
        price DECIMAL(10, 2) NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
        updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
    )
    """,
)

# Tables a reconciliation run cannot proceed without
PREREQUISITE_TABLES: tuple[SchemaTable, ...] = (USER_ROLES,)

# Everything ``provisioning ensure-schema`` guarantees
ALL_TABLES: tuple[SchemaTable, ...] = (USER_ROLES, CART_ITEMS)


def get_table(name: str) -> SchemaTable:
    for table in ALL_TABLES:
        if table.name == name:
            return table
    raise KeyError(f"No schema definition for table {name!r}")
