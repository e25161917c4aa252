"""
Permission management feature module.

Persisted permission catalog, organization roles with per-resource scopes,
and the audit trail of administrative changes.
"""
