import pytest

from gym_backend.app.services.memberships import MembershipServices, build_membership_services
from gym_backend.tests.fakes import InMemoryMembershipRepository, seed


@pytest.fixture()
def repository() -> InMemoryMembershipRepository:
    return seed(InMemoryMembershipRepository())


@pytest.fixture()
def components(repository: InMemoryMembershipRepository) -> MembershipServices:
    return build_membership_services(repository)
