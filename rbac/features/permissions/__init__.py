"""
Access control feature module.

Implements Role-Based Access Control (RBAC): roles and permissions keyed by
normalized names, direct and role-derived permission resolution, and the
mutation rules that keep the two from overlapping.
"""
