from django.db import migrations


# Tables whose rows belong to one organization (filtered on organization_id)
RLS_TABLES = [
    "accounts_profile",
    "billing_client",
    "billing_project",
    "billing_invoice",
    "billing_invoicelineitem",
    "billing_payment",
    "billing_note",
    "billing_organizationsequence",
]

BYPASS = "current_setting('app.rls_bypass', true) = 'on'"
CURRENT_ORG = "NULLIF(current_setting('app.current_org_id', true), '')::bigint"


def _policy_sql(table: str, column: str) -> list:
    predicate = f"{BYPASS} OR {column} = {CURRENT_ORG}"
    return [
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY;",
        f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY;",
        f"DROP POLICY IF EXISTS rls_tenant_isolation ON {table};",
        f"CREATE POLICY rls_tenant_isolation ON {table} USING ({predicate}) WITH CHECK ({predicate});",
    ]


def _build_rls_sql() -> list:
    statements = _policy_sql("accounts_organization", "id")
    for table in RLS_TABLES:
        statements.extend(_policy_sql(table, "organization_id"))
    return statements


def _build_rls_reverse_sql() -> list:
    statements = []
    for table in ["accounts_organization", *RLS_TABLES]:
        statements.append(f"DROP POLICY IF EXISTS rls_tenant_isolation ON {table};")
        statements.append(f"ALTER TABLE {table} NO FORCE ROW LEVEL SECURITY;")
        statements.append(f"ALTER TABLE {table} DISABLE ROW LEVEL SECURITY;")
    return statements


def _run(statements):
    def apply(apps, schema_editor):
        # Row-level security only exists on PostgreSQL
        if schema_editor.connection.vendor != "postgresql":
            return
        for statement in statements:
            schema_editor.execute(statement)

    return apply


class Migration(migrations.Migration):

    dependencies = [
        ("accounts", "0001_initial"),
        ("billing", "0001_initial"),
    ]

    operations = [
        migrations.RunPython(
            code=_run(_build_rls_sql()),
            reverse_code=_run(_build_rls_reverse_sql()),
        ),
    ]
