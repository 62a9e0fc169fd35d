"""Organization and collection-point registry clients.

Two implementations of each registry: local SQLite tables (``members``,
``collection_points``, ``point_owners``) and a remote HTTP registry selected
when REGISTRY_BASE_URL is configured.
"""

import logging
from typing import Any, Protocol

import httpx
from pydantic import TypeAdapter, ValidationError

from taskdist.core import db_client
from taskdist.core.config import constants, settings
from taskdist.core.errors import RegistryUnavailableError
from taskdist.domain.registry import CollectionPointType, PointRef, UserRef


logger = logging.getLogger(__name__)

_users = TypeAdapter(list[UserRef])
_points = TypeAdapter(list[PointRef])


class OrganizationRegistry(Protocol):
    """Source of organization/department membership."""

    async def list_active_members(
        self, *, organization_id: str | None = None, department_id: str | None = None
    ) -> list[UserRef]: ...


class CollectionPointRegistry(Protocol):
    """Source of collection points and their owners."""

    async def list_active_points(
        self, *, types: list[CollectionPointType] | None = None, ids: list[str] | None = None
    ) -> list[PointRef]: ...

    async def list_owners(self, *, point_id: str) -> list[UserRef]: ...


def _member_to_user(record: dict[str, Any]) -> UserRef:
    return UserRef(
        id=str(record["user_id"]),
        name=record["name"],
        organization_id=record.get("organization_id"),
        department_id=record.get("department_id"),
    )


class LocalOrganizationRegistry:
    """Membership read from the local ``members`` table."""

    async def list_active_members(
        self, *, organization_id: str | None = None, department_id: str | None = None
    ) -> list[UserRef]:
        where: dict[str, Any] = {"status": "ACTIVE"}
        if organization_id is not None:
            where["organization_id"] = organization_id
        if department_id is not None:
            where["department_id"] = department_id

        records = await db_client.list_all_records(
            collection="members",
            where=where,
            sort="user_id",
            per_page=constants.REGISTRY_PAGE_LIMIT,
        )
        return [_member_to_user(record) for record in records]


class LocalCollectionPointRegistry:
    """Points and ownership read from the local ``collection_points``/``point_owners`` tables."""

    async def list_active_points(
        self, *, types: list[CollectionPointType] | None = None, ids: list[str] | None = None
    ) -> list[PointRef]:
        where: dict[str, Any] = {"is_active": True}
        if types:
            where["type"] = [str(point_type) for point_type in types]
        if ids:
            where["point_id"] = ids

        records = await db_client.list_all_records(
            collection="collection_points",
            where=where,
            sort="point_id",
            per_page=constants.REGISTRY_PAGE_LIMIT,
        )
        return [PointRef(id=str(record["point_id"]), name=record["name"], type=record["type"]) for record in records]

    async def list_owners(self, *, point_id: str) -> list[UserRef]:
        owners = await db_client.list_all_records(
            collection="point_owners",
            where={"point_id": point_id, "is_active": True},
            sort="id",
            per_page=constants.REGISTRY_PAGE_LIMIT,
        )
        owner_ids = list(dict.fromkeys(str(owner["user_id"]) for owner in owners))
        if not owner_ids:
            return []

        members = await db_client.list_all_records(
            collection="members",
            where={"user_id": owner_ids},
            per_page=constants.REGISTRY_PAGE_LIMIT,
        )
        by_id = {str(member["user_id"]): _member_to_user(member) for member in members}
        # An owner without a member record still owns the point
        return [by_id.get(user_id, UserRef(id=user_id, name=user_id)) for user_id in owner_ids]


class HttpRegistryClient:
    """Shared transport for the remote registry API."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout if timeout is not None else settings.registry_timeout_seconds
        self._transport = transport

    async def get_json(self, path: str, params: list[tuple[str, str]] | None = None) -> Any:  # noqa: ANN401
        """GET a registry resource, translating transport failures into RegistryUnavailableError."""
        url = f"{self._base_url}{path}"
        headers = {}
        if self._api_key:
            headers["X-Api-Key"] = self._api_key

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(url, params=params or [], headers=headers)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("Registry returned error status", extra={"url": url, "status": e.response.status_code})
            raise RegistryUnavailableError(f"Registry returned {e.response.status_code} for {path}") from e
        except httpx.HTTPError as e:
            logger.warning("Registry request failed", extra={"url": url, "error": str(e)})
            raise RegistryUnavailableError(f"Registry request to {path} failed: {e}") from e
        except ValueError as e:
            raise RegistryUnavailableError(f"Registry returned invalid JSON for {path}") from e


def _parse(adapter: TypeAdapter, payload: Any, path: str) -> Any:  # noqa: ANN401
    try:
        return adapter.validate_python(payload)
    except ValidationError as e:
        raise RegistryUnavailableError(f"Registry returned malformed data for {path}") from e


class HttpOrganizationRegistry:
    """Membership served by the remote registry (``GET /members``)."""

    def __init__(self, client: HttpRegistryClient) -> None:
        self._client = client

    async def list_active_members(
        self, *, organization_id: str | None = None, department_id: str | None = None
    ) -> list[UserRef]:
        params = [("status", "ACTIVE")]
        if organization_id is not None:
            params.append(("organization_id", organization_id))
        if department_id is not None:
            params.append(("department_id", department_id))
        payload = await self._client.get_json("/members", params)
        return _parse(_users, payload, "/members")


class HttpCollectionPointRegistry:
    """Points and ownership served by the remote registry (``GET /collection-points``)."""

    def __init__(self, client: HttpRegistryClient) -> None:
        self._client = client

    async def list_active_points(
        self, *, types: list[CollectionPointType] | None = None, ids: list[str] | None = None
    ) -> list[PointRef]:
        params = [("is_active", "true")]
        params.extend(("type", str(point_type)) for point_type in types or [])
        params.extend(("id", point_id) for point_id in ids or [])
        payload = await self._client.get_json("/collection-points", params)
        return _parse(_points, payload, "/collection-points")

    async def list_owners(self, *, point_id: str) -> list[UserRef]:
        path = f"/collection-points/{point_id}/owners"
        payload = await self._client.get_json(path)
        return _parse(_users, payload, path)


def get_organization_registry() -> OrganizationRegistry:
    """Registry selected by configuration: remote when REGISTRY_BASE_URL is set, else local tables."""
    if settings.registry_base_url:
        return HttpOrganizationRegistry(
            HttpRegistryClient(settings.registry_base_url, api_key=settings.registry_api_key)
        )
    return LocalOrganizationRegistry()


def get_collection_point_registry() -> CollectionPointRegistry:
    """Registry selected by configuration: remote when REGISTRY_BASE_URL is set, else local tables."""
    if settings.registry_base_url:
        return HttpCollectionPointRegistry(
            HttpRegistryClient(settings.registry_base_url, api_key=settings.registry_api_key)
        )
    return LocalCollectionPointRegistry()
