import uuid

import pytest
from sqlalchemy.exc import OperationalError

from schemagate.core.exceptions import SchemaProvisioningFailed
from schemagate.models.tenant import Tenant
from schemagate.models.tenant_context import TenantIdentity
from schemagate.models.tenant_tables import TenantUser
from schemagate.services.tenant_service import derive_schema_name, slugify
from tests.conftest import create_test_token


class TestSchemaNameDerivation:
    """Tests for schema name derivation"""

    def test_from_slug(self):
        assert derive_schema_name("Acme Telematics", uuid.uuid4(), "acme") == "tenant_acme"

    def test_from_name(self):
        assert derive_schema_name("Acme Telematics LLC", uuid.uuid4()) == "tenant_acme_telematics_llc"

    def test_non_latin_name_falls_back_to_id(self):
        tenant_id = uuid.UUID("0f3a9c2e-51b7-4d8a-9e61-7c2b4f1d0a93")
        assert derive_schema_name("ГлонассТрек", tenant_id) == "tenant_0f3a9c2e51b7"

    def test_truncated_to_identifier_limit(self):
        name = derive_schema_name("x" * 100, uuid.uuid4())
        assert len(name) == 63

    def test_slugify(self):
        assert slugify("  Café & Co. ") == "cafe_co"


class TestAdminAuthentication:
    """The administrative API needs an admin token"""

    def test_requires_token(self, client):
        assert client.get("/api/companies").status_code == 401

    def test_rejects_non_admin(self, client):
        token = create_test_token(role="operator")
        response = client.get("/api/companies", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 403

    def test_rejects_expired_token(self, client):
        token = create_test_token(role="admin", expired=True)
        response = client.get("/api/companies", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_tenant_header_is_not_enough(self, client, acme):
        response = client.get("/api/companies", headers={"X-Tenant-ID": str(acme.id)})
        assert response.status_code == 401


class TestCreateCompany:
    """Tests for POST /api/companies"""

    def test_onboarding_provisions_schema(self, client, admin_headers, provisioner):
        response = client.post(
            "/api/companies",
            headers=admin_headers,
            json={"name": "Gamma Fleet", "schema_slug": "gamma", "contact_email": "ops@gamma.io"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["schema_name"] == "tenant_gamma"
        assert data["is_active"] is True
        assert data["max_users"] == 10
        assert data["language"] == "ru"
        assert provisioner.schema_exists("tenant_gamma")

    def test_onboarded_tenant_is_routable(self, client, admin_headers):
        created = client.post("/api/companies", headers=admin_headers, json={"name": "Gamma"}).json()

        response = client.get("/api/tenant", headers={"X-Tenant-ID": created["id"]})

        assert response.status_code == 200
        assert response.json()["schema_name"] == "tenant_gamma"

    def test_custom_quotas(self, client, admin_headers):
        response = client.post(
            "/api/companies",
            headers=admin_headers,
            json={"name": "Delta", "max_users": 50, "max_objects": 2000, "storage_quota": 4096},
        )

        data = response.json()
        assert data["max_users"] == 50
        assert data["max_objects"] == 2000
        assert data["storage_quota"] == 4096

    def test_duplicate_schema_name(self, client, admin_headers, acme):
        response = client.post(
            "/api/companies", headers=admin_headers, json={"name": "Acme Again", "schema_slug": "acme"}
        )
        assert response.status_code == 409

    def test_schema_name_stays_reserved_after_delete(self, client, admin_headers, acme):
        client.delete(f"/api/companies/{acme.id}", headers=admin_headers)

        response = client.post(
            "/api/companies", headers=admin_headers, json={"name": "Acme 2", "schema_slug": "acme"}
        )

        assert response.status_code == 409

    def test_duplicate_domain(self, client, admin_headers, acme):
        response = client.post(
            "/api/companies",
            headers=admin_headers,
            json={"name": "Other", "domain": "ACME.example.com"},
        )
        assert response.status_code == 409

    def test_blank_domain_is_stored_as_none(self, client, admin_headers):
        first = client.post("/api/companies", headers=admin_headers, json={"name": "Theta", "domain": "  "})
        second = client.post("/api/companies", headers=admin_headers, json={"name": "Iota", "domain": ""})

        assert first.status_code == 201
        assert second.status_code == 201
        assert first.json()["domain"] is None
        assert second.json()["domain"] is None

    def test_tenant_is_inactive_until_schema_exists(
        self, client, admin_headers, provisioner, db_session, monkeypatch
    ):
        seen = []
        real_provision = provisioner.provision

        def observing_provision(schema_name):
            seen.append(db_session.query(Tenant).filter_by(schema_name=schema_name).one().is_active)
            real_provision(schema_name)

        monkeypatch.setattr(provisioner, "provision", observing_provision)

        response = client.post(
            "/api/companies", headers=admin_headers, json={"name": "Kappa", "schema_slug": "kappa"}
        )

        assert seen == [False]
        assert response.json()["is_active"] is True

    def test_invalid_slug(self, client, admin_headers):
        response = client.post(
            "/api/companies", headers=admin_headers, json={"name": "Bad", "schema_slug": "Bad-Slug"}
        )
        assert response.status_code == 422

    def test_provisioning_failure_removes_tenant_row(
        self, client, admin_headers, provisioner, db_session, monkeypatch
    ):
        def failing_provision(schema_name):
            raise SchemaProvisioningFailed(schema_name, "permission denied for database")

        monkeypatch.setattr(provisioner, "provision", failing_provision)

        response = client.post(
            "/api/companies", headers=admin_headers, json={"name": "Epsilon", "schema_slug": "epsilon"}
        )

        assert response.status_code == 500
        assert db_session.query(Tenant).filter_by(schema_name="tenant_epsilon").count() == 0

    def test_partial_schema_is_removed_on_failure(
        self, client, admin_headers, provisioner, db_session, monkeypatch
    ):
        def broken_migrations(schema_name):
            raise OperationalError("CREATE TABLE users", {}, Exception("out of shared memory"))

        monkeypatch.setattr(provisioner, "_run_migrations", broken_migrations)

        response = client.post(
            "/api/companies", headers=admin_headers, json={"name": "Zeta", "schema_slug": "zeta"}
        )

        assert response.status_code == 500
        assert db_session.query(Tenant).count() == 0
        assert not provisioner.schema_exists("tenant_zeta")

    def test_retry_after_failure_succeeds(self, client, admin_headers, provisioner, monkeypatch):
        calls = []
        real_provision = provisioner.provision

        def flaky_provision(schema_name):
            calls.append(schema_name)
            if len(calls) == 1:
                raise SchemaProvisioningFailed(schema_name, "connection reset")
            real_provision(schema_name)

        monkeypatch.setattr(provisioner, "provision", flaky_provision)
        payload = {"name": "Eta", "schema_slug": "eta"}

        assert client.post("/api/companies", headers=admin_headers, json=payload).status_code == 500
        assert client.post("/api/companies", headers=admin_headers, json=payload).status_code == 201


class TestListAndGetCompanies:
    """Tests for GET /api/companies"""

    def test_list(self, client, admin_headers, acme, beta):
        response = client.get("/api/companies", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["page"] == 1
        assert data["total_pages"] == 1
        assert {c["schema_name"] for c in data["companies"]} == {"tenant_acme", "tenant_beta"}

    def test_search(self, client, admin_headers, acme, beta):
        response = client.get("/api/companies", headers=admin_headers, params={"search": "logist"})

        data = response.json()
        assert data["total"] == 1
        assert data["companies"][0]["name"] == "Beta Logistics"

    def test_filter_inactive(self, client, admin_headers, acme, beta):
        client.put(f"/api/companies/{beta.id}/deactivate", headers=admin_headers)

        response = client.get("/api/companies", headers=admin_headers, params={"is_active": False})

        assert [c["id"] for c in response.json()["companies"]] == [str(beta.id)]

    def test_pagination(self, client, admin_headers, create_tenant):
        for i in range(5):
            create_tenant(f"Company {i}", slug=f"company_{i}")

        response = client.get("/api/companies", headers=admin_headers, params={"page": 2, "limit": 2})

        data = response.json()
        assert data["total"] == 5
        assert data["total_pages"] == 3
        assert len(data["companies"]) == 2

    def test_get(self, client, admin_headers, acme):
        response = client.get(f"/api/companies/{acme.id}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["domain"] == "acme.example.com"

    def test_get_unknown(self, client, admin_headers):
        response = client.get(f"/api/companies/{uuid.uuid4()}", headers=admin_headers)
        assert response.status_code == 404


class TestUpdateCompany:
    """Tests for PATCH /api/companies/{id}"""

    def test_update_fields(self, client, admin_headers, acme):
        response = client.patch(
            f"/api/companies/{acme.id}",
            headers=admin_headers,
            json={"name": "Acme Group", "max_users": 25, "city": "Kazan"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "Acme Group"
        assert data["max_users"] == 25
        assert data["city"] == "Kazan"
        assert data["schema_name"] == "tenant_acme"

    def test_schema_name_is_not_updatable(self, client, admin_headers, acme):
        response = client.patch(
            f"/api/companies/{acme.id}", headers=admin_headers, json={"schema_name": "tenant_other"}
        )

        assert response.status_code == 200
        assert response.json()["schema_name"] == "tenant_acme"

    def test_schema_name_is_immutable_on_model(self, db_session, acme):
        with pytest.raises(ValueError):
            acme.schema_name = "tenant_other"

    def test_update_refreshes_quota_snapshot(self, client, admin_headers, acme, schema_cache):
        client.get("/api/tenant", headers={"X-Tenant-ID": str(acme.id)})
        assert schema_cache.contains(acme.id)

        client.patch(f"/api/companies/{acme.id}", headers=admin_headers, json={"max_objects": 500})

        assert not schema_cache.contains(acme.id)
        response = client.get("/api/tenant", headers={"X-Tenant-ID": str(acme.id)})
        assert response.json()["quotas"]["max_objects"] == 500

    def test_domain_conflict(self, client, admin_headers, acme, beta):
        response = client.patch(
            f"/api/companies/{beta.id}", headers=admin_headers, json={"domain": "acme.example.com"}
        )
        assert response.status_code == 409

    def test_blank_domain_clears_it(self, client, admin_headers, acme, beta):
        cleared = client.patch(f"/api/companies/{acme.id}", headers=admin_headers, json={"domain": " "})
        also_cleared = client.patch(f"/api/companies/{beta.id}", headers=admin_headers, json={"domain": ""})

        assert cleared.status_code == 200
        assert also_cleared.status_code == 200
        assert cleared.json()["domain"] is None
        assert also_cleared.json()["domain"] is None


class TestDeleteCompany:
    """Tests for DELETE /api/companies/{id}"""

    def test_soft_delete(self, client, admin_headers, acme, db_session, provisioner):
        response = client.delete(f"/api/companies/{acme.id}", headers=admin_headers)

        assert response.status_code == 204
        assert client.get(f"/api/companies/{acme.id}", headers=admin_headers).status_code == 404
        db_session.expire_all()
        row = db_session.get(Tenant, acme.id)
        assert row.deleted_at is not None
        assert row.is_active is False
        # Schema and data are retained
        assert provisioner.schema_exists("tenant_acme")

    def test_refused_while_users_exist(self, client, admin_headers, acme, schema_cache):
        handle = schema_cache.get_or_create(TenantIdentity.from_tenant(acme))
        with handle.session() as session:
            session.add(TenantUser(username="dispatcher"))
            session.commit()

        response = client.delete(f"/api/companies/{acme.id}", headers=admin_headers)

        assert response.status_code == 409
        assert "users (1)" in response.json()["detail"]


class TestCompanyUsage:
    """Tests for GET /api/companies/{id}/usage"""

    def test_usage(self, client, admin_headers, acme, schema_cache):
        handle = schema_cache.get_or_create(TenantIdentity.from_tenant(acme))
        with handle.session() as session:
            session.add_all([TenantUser(username="u1"), TenantUser(username="u2")])
            session.commit()

        response = client.get(f"/api/companies/{acme.id}/usage", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["users_count"] == 2
        assert data["objects_count"] == 0
        assert data["max_users"] == 10

    def test_admin_usage_does_not_populate_routing_cache(self, client, admin_headers, acme, schema_cache):
        client.get(f"/api/companies/{acme.id}/usage", headers=admin_headers)
        assert not schema_cache.contains(acme.id)


class TestCacheAdministration:
    """Tests for POST /api/admin/cache/clear"""

    def test_clear_one_tenant(self, client, admin_headers, acme, beta, schema_cache):
        for tenant in (acme, beta):
            client.get("/api/tenant", headers={"X-Tenant-ID": str(tenant.id)})

        response = client.post(
            "/api/admin/cache/clear", headers=admin_headers, json={"tenant_id": str(acme.id)}
        )

        assert response.json() == {"cleared": 1, "scope": str(acme.id)}
        assert not schema_cache.contains(acme.id)
        assert schema_cache.contains(beta.id)

    def test_clear_all(self, client, admin_headers, acme, beta, schema_cache):
        for tenant in (acme, beta):
            client.get("/api/tenant", headers={"X-Tenant-ID": str(tenant.id)})

        response = client.post("/api/admin/cache/clear", headers=admin_headers)

        assert response.json() == {"cleared": 2, "scope": "all"}
        assert len(schema_cache) == 0

    def test_requires_admin(self, client):
        assert client.post("/api/admin/cache/clear").status_code == 401
