from dataclasses import dataclass

import pytest

from furniview import webapi


@dataclass
class Member:
    user_id: str
    company_id: str
    headers: dict[str, str]


def _sign_up(services: webapi.Services, email: str) -> tuple[str, dict[str, str]]:
    result = services.auth.sign_up(email, "password123")
    return result["user"]["id"], {"Authorization": f"Bearer {result['session']['access_token']}"}


@pytest.fixture
def member(services: webapi.Services) -> Member:
    user_id, headers = _sign_up(services, "owner@nordicoak.example")
    company = services.companies.create_company(user_id, "Nordic Oak")
    return Member(user_id=user_id, company_id=company.id, headers=headers)


@pytest.fixture
def outsider(services: webapi.Services) -> Member:
    user_id, headers = _sign_up(services, "someone@elsewhere.example")
    company = services.companies.create_company(user_id, "Elsewhere Ltd")
    return Member(user_id=user_id, company_id=company.id, headers=headers)
