"""Tests for the local (SQLite) and remote (HTTP) registry clients."""

import httpx
import pytest

from taskdist.core import db_client
from taskdist.core.config import settings
from taskdist.core.errors import RegistryUnavailableError
from taskdist.domain.registry import CollectionPointType
from taskdist.interface.registries import (
    HttpCollectionPointRegistry,
    HttpOrganizationRegistry,
    HttpRegistryClient,
    LocalCollectionPointRegistry,
    LocalOrganizationRegistry,
    get_collection_point_registry,
    get_organization_registry,
)


async def _seed_registry() -> None:
    members = [
        ("u1", "Alice", "o1", "d1", "ACTIVE"),
        ("u2", "Bob", "o1", "d2", "ACTIVE"),
        ("u3", "Carol", "o2", "d3", "ACTIVE"),
        ("u4", "Dave", "o1", "d1", "INACTIVE"),
    ]
    for user_id, name, organization_id, department_id, status in members:
        await db_client.create_record(
            collection="members",
            data={
                "user_id": user_id,
                "name": name,
                "organization_id": organization_id,
                "department_id": department_id,
                "status": status,
            },
        )

    points = [("p1", "PORT", True), ("p2", "PORT", True), ("p3", "PORT", False), ("m1", "MARKET", True)]
    for point_id, point_type, is_active in points:
        await db_client.create_record(
            collection="collection_points",
            data={"point_id": point_id, "name": f"Point {point_id}", "type": point_type, "is_active": is_active},
        )

    owners = [("p1", "u1", True), ("p1", "u9", True), ("p2", "u2", False), ("m1", "u3", True)]
    for point_id, user_id, is_active in owners:
        await db_client.create_record(
            collection="point_owners",
            data={"point_id": point_id, "user_id": user_id, "is_active": is_active},
        )


@pytest.mark.unit
async def test_local_members_by_unit(sqlite_db: str) -> None:
    """Only active members of the requested unit are returned."""
    await _seed_registry()
    registry = LocalOrganizationRegistry()

    in_o1 = await registry.list_active_members(organization_id="o1")
    in_d1 = await registry.list_active_members(department_id="d1")

    assert [member.id for member in in_o1] == ["u1", "u2"]
    assert [(member.id, member.name, member.department_id) for member in in_d1] == [("u1", "Alice", "d1")]


@pytest.mark.unit
async def test_local_points_by_type_and_id(sqlite_db: str) -> None:
    await _seed_registry()
    registry = LocalCollectionPointRegistry()

    ports = await registry.list_active_points(types=[CollectionPointType.PORT])
    mixed = await registry.list_active_points(
        types=[CollectionPointType.PORT, CollectionPointType.MARKET], ids=["m1", "p3"]
    )

    assert [found.id for found in ports] == ["p1", "p2"]
    assert [(found.id, found.type) for found in mixed] == [("m1", CollectionPointType.MARKET)]


@pytest.mark.unit
async def test_local_owners(sqlite_db: str) -> None:
    """Active owners resolve to members; an owner without a member row still counts."""
    await _seed_registry()
    registry = LocalCollectionPointRegistry()

    p1_owners = await registry.list_owners(point_id="p1")
    p2_owners = await registry.list_owners(point_id="p2")

    assert [(owner.id, owner.name) for owner in p1_owners] == [("u1", "Alice"), ("u9", "u9")]
    assert p2_owners == []


@pytest.mark.unit
async def test_local_registry_matches_zero_padded_ids(sqlite_db: str) -> None:
    """Numeric-looking text identifiers match exactly, leading zeros included."""
    await db_client.create_record(
        collection="members",
        data={"user_id": "007", "name": "Bond", "organization_id": "0001", "department_id": "0042"},
    )
    await db_client.create_record(
        collection="collection_points", data={"point_id": "0100", "name": "Port 100", "type": "PORT"}
    )
    await db_client.create_record(collection="point_owners", data={"point_id": "0100", "user_id": "007"})
    organizations = LocalOrganizationRegistry()
    points = LocalCollectionPointRegistry()

    by_department = await organizations.list_active_members(department_id="0042")
    by_organization = await organizations.list_active_members(organization_id="0001")
    found = await points.list_active_points(ids=["0100"])
    owners = await points.list_owners(point_id="0100")

    assert [member.id for member in by_department] == ["007"]
    assert [member.id for member in by_organization] == ["007"]
    assert [point.id for point in found] == ["0100"]
    assert [(owner.id, owner.name) for owner in owners] == [("007", "Bond")]


@pytest.mark.unit
async def test_local_registry_ids_with_filter_syntax(sqlite_db: str) -> None:
    """Identifiers are bound as values, so quotes and operators in them are just text."""
    odd_id = 'd1" || department_id = "d2'
    await db_client.create_record(
        collection="members", data={"user_id": "u1", "name": "Alice", "department_id": odd_id}
    )
    await db_client.create_record(collection="members", data={"user_id": "u2", "name": "Bob", "department_id": "d2"})

    members = await LocalOrganizationRegistry().list_active_members(department_id=odd_id)

    assert [member.id for member in members] == ["u1"]


def _transport(routes: dict[str, httpx.Response], seen: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return routes.get(request.url.path, httpx.Response(404, json={"detail": "not found"}))

    return httpx.MockTransport(handler)


@pytest.mark.unit
async def test_http_members_sends_filters_and_api_key() -> None:
    seen: list[httpx.Request] = []
    routes = {
        "/members": httpx.Response(200, json=[{"id": "u1", "name": "Alice", "department_id": "d1"}]),
    }
    client = HttpRegistryClient("https://registry.test/", api_key="secret", transport=_transport(routes, seen))

    members = await HttpOrganizationRegistry(client).list_active_members(department_id="d1")

    assert [(member.id, member.department_id) for member in members] == [("u1", "d1")]
    [request] = seen
    assert request.headers["X-Api-Key"] == "secret"
    assert request.url.params.get("status") == "ACTIVE"
    assert request.url.params.get("department_id") == "d1"


@pytest.mark.unit
async def test_http_points_and_owners() -> None:
    seen: list[httpx.Request] = []
    routes = {
        "/collection-points": httpx.Response(200, json=[{"id": "p1", "name": "Port 1", "type": "PORT"}]),
        "/collection-points/p1/owners": httpx.Response(200, json=[{"id": "u1", "name": "Alice"}]),
    }
    client = HttpRegistryClient("https://registry.test", transport=_transport(routes, seen))
    registry = HttpCollectionPointRegistry(client)

    points = await registry.list_active_points(types=[CollectionPointType.PORT, CollectionPointType.MARKET])
    owners = await registry.list_owners(point_id="p1")

    assert [found.id for found in points] == ["p1"]
    assert [owner.id for owner in owners] == ["u1"]
    assert seen[0].url.params.get_list("type") == ["PORT", "MARKET"]
    assert "X-Api-Key" not in seen[0].headers


@pytest.mark.unit
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(503, json={"detail": "maintenance"}),
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json=[{"unexpected": "shape"}]),
    ],
)
async def test_http_failures_raise_unavailable(response: httpx.Response) -> None:
    client = HttpRegistryClient("https://registry.test", transport=_transport({"/members": response}, []))

    with pytest.raises(RegistryUnavailableError):
        await HttpOrganizationRegistry(client).list_active_members(organization_id="o1")


@pytest.mark.unit
async def test_http_transport_error_raises_unavailable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = HttpRegistryClient("https://registry.test", transport=httpx.MockTransport(refuse))

    with pytest.raises(RegistryUnavailableError, match="failed"):
        await HttpCollectionPointRegistry(client).list_owners(point_id="p1")


@pytest.mark.unit
def test_registry_selection_follows_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "registry_base_url", None)
    assert isinstance(get_organization_registry(), LocalOrganizationRegistry)
    assert isinstance(get_collection_point_registry(), LocalCollectionPointRegistry)

    monkeypatch.setattr(settings, "registry_base_url", "https://registry.test")
    assert isinstance(get_organization_registry(), HttpOrganizationRegistry)
    assert isinstance(get_collection_point_registry(), HttpCollectionPointRegistry)
