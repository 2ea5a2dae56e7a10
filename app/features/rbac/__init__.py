"""
Role-based access control feature module.

Holds the permission table, the admin > manager > member hierarchy, organization
scoping and the capability engine that both the query endpoints and the
mutation handlers consult.
"""
