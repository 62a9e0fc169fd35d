"""Pytest configuration and fixtures for unit tests."""

import pytest

from tests.unit.mocks import FakeCollectionPointRegistry, FakeOrganizationRegistry, port_registry, user


@pytest.fixture
def port_points() -> FakeCollectionPointRegistry:
    """Five PORT points, one of them without an owner, plus one STATION."""
    return port_registry()


@pytest.fixture
def organizations() -> FakeOrganizationRegistry:
    """Two departments sharing u2 and one organization spanning both."""
    return FakeOrganizationRegistry(
        departments={
            "d1": [user("u1", department_id="d1"), user("u2", department_id="d1")],
            "d2": [user("u2", department_id="d1"), user("u3", department_id="d2")],
            "empty": [],
        },
        organizations={
            "o1": [user("u1", organization_id="o1"), user("u2", organization_id="o1")],
            "o2": [user("u2", organization_id="o1"), user("u4", organization_id="o2")],
        },
    )
