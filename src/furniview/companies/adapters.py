from pathlib import Path

from supabase import Client

from furniview.errors import StorageError
from furniview.jsonfile import JsonFile

from .interfaces import CompanyStore

COMPANY_COLUMNS = "id, name, website_url, contact_email, created_at"


class SupabaseCompanyStore(CompanyStore):
    def __init__(self, client: Client) -> None:
        self._client = client

    def insert_company(self, row: dict[str, object]) -> dict[str, object]:
        return self._client.table("companies").insert(row).execute().data[0]

    def get_company(self, company_id: str) -> dict[str, object] | None:
        rows = self._client.table("companies").select("*").eq("id", company_id).execute().data
        return rows[0] if rows else None

    def delete_company(self, company_id: str) -> None:
        self._client.table("companies").delete().eq("id", company_id).execute()

    def add_member(self, row: dict[str, object]) -> dict[str, object]:
        return self._client.table("company_members").insert(row).execute().data[0]

    def get_membership(self, user_id: str, company_id: str) -> dict[str, object] | None:
        rows = (
            self._client.table("company_members")
            .select("user_id, company_id, role")
            .eq("user_id", user_id)
            .eq("company_id", company_id)
            .execute()
            .data
        )
        return rows[0] if rows else None

    def list_memberships(self, user_id: str) -> list[dict[str, object]]:
        rows = (
            self._client.table("company_members")
            .select(f"user_id, company_id, role, companies({COMPANY_COLUMNS})")
            .eq("user_id", user_id)
            .execute()
            .data
        )
        memberships = []
        for row in rows:
            company = row.pop("companies", None)
            memberships.append({**row, "company": company})
        return memberships


class LocalCompanyStore(CompanyStore):
    """Companies and memberships in a single JSON document under ``data_dir``."""

    def __init__(self, data_dir: str) -> None:
        self._doc = JsonFile(Path(data_dir).resolve() / "companies.json", default={"companies": [], "members": []})

    def insert_company(self, row: dict[str, object]) -> dict[str, object]:
        with self._doc.lock:
            data = self._doc.read()
            if any(c["id"] == row["id"] for c in data["companies"]):
                raise StorageError(f"company {row['id']} already exists")
            data["companies"].append(dict(row))
            self._doc.write(data)
        return dict(row)

    def get_company(self, company_id: str) -> dict[str, object] | None:
        data = self._doc.read()
        return next((c for c in data["companies"] if c["id"] == company_id), None)

    def delete_company(self, company_id: str) -> None:
        with self._doc.lock:
            data = self._doc.read()
            data["companies"] = [c for c in data["companies"] if c["id"] != company_id]
            data["members"] = [m for m in data["members"] if m["company_id"] != company_id]
            self._doc.write(data)

    def add_member(self, row: dict[str, object]) -> dict[str, object]:
        with self._doc.lock:
            data = self._doc.read()
            if not any(c["id"] == row["company_id"] for c in data["companies"]):
                raise StorageError(f"company {row['company_id']} does not exist")
            data["members"] = [
                m
                for m in data["members"]
                if not (m["user_id"] == row["user_id"] and m["company_id"] == row["company_id"])
            ]
            data["members"].append(dict(row))
            self._doc.write(data)
        return dict(row)

    def get_membership(self, user_id: str, company_id: str) -> dict[str, object] | None:
        data = self._doc.read()
        return next(
            (m for m in data["members"] if m["user_id"] == user_id and m["company_id"] == company_id),
            None,
        )

    def list_memberships(self, user_id: str) -> list[dict[str, object]]:
        data = self._doc.read()
        companies = {c["id"]: c for c in data["companies"]}
        return [
            {
                "user_id": m["user_id"],
                "company_id": m["company_id"],
                "role": m["role"],
                "company": companies.get(m["company_id"]),
            }
            for m in data["members"]
            if m["user_id"] == user_id
        ]
