import uuid

import pytest

from schemagate.core.exceptions import (
    TenantIdentityMalformed,
    TenantInactive,
    TenantNotFound,
    TenantResolutionError,
    UnauthorizedException,
)
from schemagate.repositories.tenant_repository import TenantRepository
from schemagate.services.tenant_resolver import TenantResolver


class TestResolve:
    """Tests for TenantResolver.resolve"""

    def test_resolves_active_tenant(self, db_session, acme):
        identity = TenantResolver(db_session).resolve(str(acme.id))

        assert identity.tenant_id == acme.id
        assert identity.name == "Acme Telematics"
        assert identity.schema_name == "tenant_acme"
        assert identity.quotas.max_users == 10
        assert identity.quotas.max_objects == 100
        assert identity.quotas.storage_quota_mb == 1024

    def test_tolerates_surrounding_whitespace(self, db_session, acme):
        identity = TenantResolver(db_session).resolve(f"  {acme.id}  ")
        assert identity.tenant_id == acme.id

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_missing_identifier(self, db_session, raw):
        with pytest.raises(TenantIdentityMalformed):
            TenantResolver(db_session).resolve(raw)

    @pytest.mark.parametrize("raw", ["acme", "12345", "not-a-uuid-at-all"])
    def test_malformed_identifier(self, db_session, raw):
        with pytest.raises(TenantIdentityMalformed):
            TenantResolver(db_session).resolve(raw)

    def test_unknown_tenant(self, db_session):
        with pytest.raises(TenantNotFound):
            TenantResolver(db_session).resolve(str(uuid.uuid4()))

    def test_soft_deleted_tenant_is_not_found(self, db_session, acme):
        TenantRepository(db_session).soft_delete(acme)

        with pytest.raises(TenantNotFound):
            TenantResolver(db_session).resolve(str(acme.id))

    def test_inactive_tenant(self, db_session, acme):
        acme.is_active = False
        db_session.commit()

        with pytest.raises(TenantInactive):
            TenantResolver(db_session).resolve(str(acme.id))

    def test_error_hierarchy(self):
        assert issubclass(TenantIdentityMalformed, TenantResolutionError)
        assert issubclass(TenantNotFound, UnauthorizedException)
        assert not issubclass(TenantInactive, UnauthorizedException)


class TestResolveDomain:
    """Tests for TenantResolver.resolve_domain"""

    def test_custom_domain(self, db_session, acme):
        identity = TenantResolver(db_session).resolve_domain("acme.example.com")
        assert identity.tenant_id == acme.id

    def test_custom_domain_with_port_and_case(self, db_session, acme):
        identity = TenantResolver(db_session).resolve_domain("ACME.example.com:8443")
        assert identity.tenant_id == acme.id

    def test_subdomain_maps_to_schema_slug(self, db_session, beta):
        identity = TenantResolver(db_session).resolve_domain("beta.schemagate.io")
        assert identity.tenant_id == beta.id

    def test_unknown_host(self, db_session, acme):
        with pytest.raises(TenantNotFound):
            TenantResolver(db_session).resolve_domain("unknown.schemagate.io")
