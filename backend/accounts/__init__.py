# accounts/__init__.py
"""
Accounts app - Identity and multi-tenancy for ClientLedger.

This app provides:
- Organization: Tenant model
- User: Custom user model (email login)
- Profile: User-Organization link with role (admin/user)
- ActorContext: Authorization context utilities
- RLS helpers and middleware for PostgreSQL row-level security

Multi-tenancy is enforced at every layer through the ActorContext pattern.
"""
