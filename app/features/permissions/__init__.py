"""
Permission management feature module.

Implements unidade-scoped Role-Based Access Control (RBAC) with per-user
overrides, and an append-only access log of every authorization decision.
"""
