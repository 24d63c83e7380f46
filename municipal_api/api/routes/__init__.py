"""
API route modules.

This package contains subrouters for:
- Auth: identity of the current caller
- Users: user administration and role assignment
- Roles: role administration
- Grants: explicit sede/subsede access grants
- Permits: citizen-document lookup and payment refunds
- Entities: scoped list/get/create/update/soft-delete/toggle routes for every entity kind

Routers are included from municipal_api.api.main (under the API prefix).
"""
