"""
Access control feature module.

Permission catalog, role policies, request context resolution, route guards
and query filters for organization-scoped, project-aware authorization.
"""
