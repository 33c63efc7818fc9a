"""Per-request tenant routing: resolve the tenant, attach its schema handle."""

import logging
from enum import Enum

from fastapi import Request
from sqlalchemy.orm import Session

from schemagate.core.exceptions import (
    SchemaGateException,
    TenantIdentityMalformed,
    UnauthorizedException,
)
from schemagate.core.security import extract_tenant_claim
from schemagate.models.tenant_context import TenantContext, TenantIdentity
from schemagate.services.schema_cache import SchemaConnectionCache
from schemagate.services.tenant_resolver import TenantResolver

logger = logging.getLogger(__name__)


class RouteState(str, Enum):
    """Routing progress of one request"""

    UNRESOLVED = "unresolved"
    RESOLVING = "resolving"
    ROUTED = "routed"
    REJECTED = "rejected"


class TenantRouter:
    """
    Routes a request to its tenant schema.

    Unresolved -> Resolving -> Routed | Rejected. The outcome is stored on
    request.state, so repeated invocation within one request (several
    dependencies asking for the context) never resolves twice and a
    rejection is replayed rather than re-evaluated.

    Public routes never reach this class: they are mounted without the
    routing dependency.
    """

    def __init__(self, cache: SchemaConnectionCache, header_name: str = "X-Tenant-ID"):
        self.cache = cache
        self.header_name = header_name

    def route(self, request: Request, db: Session) -> TenantContext:
        """
        Resolve the acting tenant and bind its handle to the request.

        Raises:
            TenantIdentityMalformed, TenantNotFound: mapped to 401
            TenantInactive: mapped to 403
            SchemaProvisioningFailed: handle could not be built (500)
        """
        state = getattr(request.state, "tenant_route_state", RouteState.UNRESOLVED)
        if state == RouteState.ROUTED:
            return request.state.tenant_context
        if state == RouteState.REJECTED:
            raise request.state.tenant_route_error

        request.state.tenant_route_state = RouteState.RESOLVING
        try:
            identity = self._resolve(request, TenantResolver(db))
            handle = self.cache.get_or_create(identity)
        except SchemaGateException as e:
            request.state.tenant_route_state = RouteState.REJECTED
            request.state.tenant_route_error = e
            logger.info("Request %s %s rejected: %s", request.method, request.url.path, e)
            raise

        context = TenantContext(identity=identity, handle=handle)
        request.state.tenant_context = context
        request.state.tenant_route_state = RouteState.ROUTED
        return context

    def _resolve(self, request: Request, resolver: TenantResolver) -> TenantIdentity:
        # 1. Explicit header
        header_value = request.headers.get(self.header_name)
        if header_value is not None:
            return resolver.resolve(header_value)

        # 2. Tenant claim of a bearer token
        token = _bearer_token(request)
        if token:
            try:
                claim = extract_tenant_claim(token)
            except UnauthorizedException as e:
                raise TenantIdentityMalformed(str(e))
            if claim is not None:
                return resolver.resolve(claim)

        # 3. Request host (custom domain or tenant subdomain)
        host = request.headers.get("host", "")
        if "." in host.split(":", 1)[0]:
            return resolver.resolve_domain(host)

        raise TenantIdentityMalformed("Tenant identifier is missing")


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]
