# tests/test_roles_api.py
from __future__ import annotations

import uuid

import pytest
from fastapi import HTTPException
from sqlalchemy import select

from conftest import add_member, auth_headers, make_candidate, make_company
from talentloop.api.deps.permissions import require_permissions
from talentloop.auth.permissions import PERM
from talentloop.core.roles import RoleType
from talentloop.crud.roles import get_user_role
from talentloop.models.role import Permission

pytestmark = pytest.mark.asyncio(loop_scope="session")


async def test_candidates_have_no_roles_api(client, db):
    tenant, user, _ = await make_candidate(db)
    r = await client.get("/api/v1/roles/my-role", headers=auth_headers(user, tenant))
    assert r.status_code == 403
    assert r.json()["detail"]["code"] == "tenant_type_forbidden"


async def test_list_roles_and_permissions(client, db):
    tenant, owner, _ = await make_company(db)
    headers = auth_headers(owner, tenant)

    r = await client.get("/api/v1/roles", headers=headers)
    assert r.status_code == 200
    roles = {role["name"]: role for role in r.json()}
    assert set(roles) == {"OWNER", "ADMIN", "MANAGER", "MEMBER", "VIEWER"}
    assert roles["OWNER"]["level"] == 5
    assert "billing:manage" not in roles["ADMIN"]["permissions"]

    r = await client.get("/api/v1/roles/permissions/billing", headers=headers)
    assert {p["name"] for p in r.json()} == {"billing:read", "billing:manage"}

    member, _ = await add_member(db, tenant, email="dev@acme.com")
    r = await client.get("/api/v1/roles", headers=auth_headers(member, tenant))
    assert r.status_code == 403


async def test_owner_replaces_role_permissions(client, db):
    tenant, owner, _ = await make_company(db)
    headers = auth_headers(owner, tenant)
    roles = {role["name"]: role for role in (await client.get("/api/v1/roles", headers=headers)).json()}
    billing_read = (await db.execute(select(Permission).where(Permission.name == "billing:read"))).scalar_one()

    r = await client.patch(
        f"/api/v1/roles/{roles['VIEWER']['id']}/permissions",
        json={"permissionIds": [str(billing_read.id)]},
        headers=headers,
    )
    assert r.status_code == 200
    assert r.json()["permissions"] == ["billing:read"]

    r = await client.patch(
        f"/api/v1/roles/{roles['VIEWER']['id']}/permissions",
        json={"permissionIds": [str(uuid.uuid4())]},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["detail"]["code"] == "unknown_permissions"

    r = await client.patch(f"/api/v1/roles/{uuid.uuid4()}/permissions", json={"permissionIds": []}, headers=headers)
    assert r.status_code == 404

    admin, _ = await add_member(db, tenant, email="admin@acme.com", role=RoleType.ADMIN)
    r = await client.patch(
        f"/api/v1/roles/{roles['VIEWER']['id']}/permissions",
        json={"permissionIds": []},
        headers=auth_headers(admin, tenant),
    )
    assert r.status_code == 403


async def test_team_and_my_role(client, db):
    tenant, owner, _ = await make_company(db)
    manager, _ = await add_member(db, tenant, email="manager@acme.com", role=RoleType.MANAGER)
    await add_member(db, tenant, email="norole@acme.com", role=None)

    r = await client.get("/api/v1/roles/team", headers=auth_headers(manager, tenant))
    assert r.status_code == 200
    team = {m["email"]: m["role"] for m in r.json()}
    assert team == {"owner@acme.com": "OWNER", "manager@acme.com": "MANAGER", "norole@acme.com": None}

    r = await client.get("/api/v1/roles/my-role", headers=auth_headers(manager, tenant))
    body = r.json()
    assert (body["role"], body["level"]) == ("MANAGER", 3)

    r = await client.get(f"/api/v1/roles/user/{manager.id}", headers=auth_headers(owner, tenant))
    assert r.json()["role"] == "MANAGER"

    r = await client.get(f"/api/v1/roles/user/{uuid.uuid4()}", headers=auth_headers(owner, tenant))
    assert r.status_code == 404


async def test_my_permissions(client, db):
    tenant, owner, _ = await make_company(db)
    viewer, _ = await add_member(db, tenant, email="viewer@acme.com", role=RoleType.VIEWER)

    r = await client.get("/api/v1/roles/my-permissions", headers=auth_headers(owner, tenant))
    body = r.json()
    assert body["role"] == "OWNER"
    assert "billing:manage" in body["permissions"]

    r = await client.get("/api/v1/roles/my-permissions", headers=auth_headers(viewer, tenant))
    body = r.json()
    assert body["role"] == "VIEWER"
    assert "billing:read" in body["permissions"]
    assert "billing:manage" not in body["permissions"]
    assert body["permissions"] == sorted(body["permissions"])


async def test_assign_rules(client, db):
    tenant, owner, _ = await make_company(db)
    admin, _ = await add_member(db, tenant, email="admin@acme.com", role=RoleType.ADMIN)
    newbie, _ = await add_member(db, tenant, email="new@acme.com", role=None)
    _, outsider, _ = await make_company(db, slug="globex", owner_email="owner@globex.com")

    r = await client.post(
        "/api/v1/roles/assign", json={"userId": str(newbie.id), "role": "ADMIN"}, headers=auth_headers(admin, tenant)
    )
    assert r.status_code == 403

    r = await client.post(
        "/api/v1/roles/assign", json={"userId": str(newbie.id), "role": "owner"}, headers=auth_headers(owner, tenant)
    )
    assert r.status_code == 403

    r = await client.post(
        "/api/v1/roles/assign", json={"userId": str(newbie.id), "role": "ROOT"}, headers=auth_headers(owner, tenant)
    )
    assert r.status_code == 422

    r = await client.post(
        "/api/v1/roles/assign", json={"userId": str(outsider.id), "role": "MEMBER"}, headers=auth_headers(owner, tenant)
    )
    assert r.status_code == 404

    r = await client.post(
        "/api/v1/roles/assign", json={"userId": str(newbie.id), "role": "member"}, headers=auth_headers(admin, tenant)
    )
    assert r.status_code == 201
    body = r.json()
    assert body["role"] == "MEMBER"
    assert body["assignedBy"] == str(admin.id)

    _, role = await get_user_role(db, newbie.id, tenant.id)
    assert role.name == "MEMBER"


async def test_change_rules(client, db):
    tenant, owner, _ = await make_company(db)
    admin, _ = await add_member(db, tenant, email="admin@acme.com", role=RoleType.ADMIN)
    member, _ = await add_member(db, tenant, email="dev@acme.com")
    admin_headers = auth_headers(admin, tenant)

    r = await client.patch("/api/v1/roles/change", json={"userId": str(admin.id), "newRole": "VIEWER"}, headers=admin_headers)
    assert r.status_code == 403

    r = await client.patch("/api/v1/roles/change", json={"userId": str(member.id), "newRole": "OWNER"}, headers=admin_headers)
    assert r.status_code == 403

    r = await client.patch("/api/v1/roles/change", json={"userId": str(owner.id), "newRole": "VIEWER"}, headers=admin_headers)
    assert r.status_code == 403

    r = await client.patch("/api/v1/roles/change", json={"userId": str(member.id), "newRole": "MANAGER"}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["role"] == "MANAGER"

    # a user holds a single role per tenant
    r = await client.get("/api/v1/roles/team", headers=auth_headers(owner, tenant))
    assert [m["role"] for m in r.json() if m["email"] == "dev@acme.com"] == ["MANAGER"]


async def test_remove_rules(client, db):
    tenant, owner, _ = await make_company(db)
    admin, _ = await add_member(db, tenant, email="admin@acme.com", role=RoleType.ADMIN)
    member, _ = await add_member(db, tenant, email="dev@acme.com")
    admin_headers = auth_headers(admin, tenant)

    r = await client.request("DELETE", "/api/v1/roles/remove", json={"userId": str(admin.id)}, headers=admin_headers)
    assert r.status_code == 403

    r = await client.request("DELETE", "/api/v1/roles/remove", json={"userId": str(owner.id)}, headers=admin_headers)
    assert r.status_code == 403

    r = await client.request("DELETE", "/api/v1/roles/remove", json={"userId": str(member.id)}, headers=admin_headers)
    assert r.status_code == 204
    assert await get_user_role(db, member.id, tenant.id) is None


async def test_require_permissions_dependency(db):
    tenant, owner, _ = await make_company(db)
    viewer, _ = await add_member(db, tenant, email="viewer@acme.com", role=RoleType.VIEWER)
    _, owner_role = await get_user_role(db, owner.id, tenant.id)
    _, viewer_role = await get_user_role(db, viewer.id, tenant.id)

    manage = require_permissions(PERM.BILLING_MANAGE)
    assert await manage(db=db, role=owner_role) is owner_role

    with pytest.raises(HTTPException) as exc:
        await manage(db=db, role=viewer_role)
    assert exc.value.status_code == 403
    assert exc.value.detail["missing"] == ["billing:manage"]

    either = require_permissions([PERM.BILLING_MANAGE, PERM.BILLING_READ], any_of=True)
    assert await either(db=db, role=viewer_role) is viewer_role

    both = require_permissions([PERM.BILLING_MANAGE, PERM.BILLING_READ])
    with pytest.raises(HTTPException) as exc:
        await both(db=db, role=viewer_role)
    assert exc.value.detail["code"] == "rbac_forbidden"

    with pytest.raises(HTTPException) as exc:
        await manage(db=db, role=None)
    assert exc.value.detail["code"] == "rbac_role_missing"
