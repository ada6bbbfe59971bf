from typing import Protocol


class CompanyStore(Protocol):
    def insert_company(self, row: dict[str, object]) -> dict[str, object]:
        ...

    def get_company(self, company_id: str) -> dict[str, object] | None:
        ...

    def delete_company(self, company_id: str) -> None:
        ...

    def add_member(self, row: dict[str, object]) -> dict[str, object]:
        ...

    def get_membership(self, user_id: str, company_id: str) -> dict[str, object] | None:
        ...

    def list_memberships(self, user_id: str) -> list[dict[str, object]]:
        """Memberships of the user, each with the company row under ``"company"``."""
