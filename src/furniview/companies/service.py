import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from furniview.errors import RecordNotFound

from .interfaces import CompanyStore

logger = logging.getLogger(__name__)


class CompanyRole:
    ADMIN = "admin"
    MEMBER = "member"


@dataclass
class CompanyRecord:
    data: dict[str, object]

    @property
    def id(self) -> str:
        return str(self.data["id"])  # type: ignore[index]

    @property
    def name(self) -> str:
        return str(self.data.get("name", ""))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class CompanyService:
    """Creates companies and answers membership questions for the HTTP layer."""

    def __init__(self, store: CompanyStore) -> None:
        self._store = store

    def create_company(
        self,
        user_id: str,
        name: str,
        *,
        website_url: str | None = None,
        contact_email: str | None = None,
    ) -> CompanyRecord:
        """Create a company and make the creating user its admin."""
        if not name or not name.strip():
            raise ValueError("company name is required")
        now = _now()
        company = self._store.insert_company(
            {
                "id": str(uuid.uuid4()),
                "name": name.strip(),
                "website_url": (website_url or "").strip() or None,
                "contact_email": (contact_email or "").strip() or None,
                "created_at": now,
            }
        )
        record = CompanyRecord(company)
        try:
            self._store.add_member(
                {"user_id": user_id, "company_id": record.id, "role": CompanyRole.ADMIN, "created_at": now}
            )
        except Exception:
            logger.error("Adding admin %s to company %s failed; removing company", user_id, record.id)
            self._store.delete_company(record.id)
            raise
        logger.info("Company %s created by user %s", record.id, user_id)
        return record

    def list_for_user(self, user_id: str) -> list[dict[str, object]]:
        return self._store.list_memberships(user_id)

    def require_member(self, user_id: str, company_id: str) -> dict[str, object]:
        """Return the user's membership row; RecordNotFound when there is none."""
        membership = self._store.get_membership(user_id, company_id)
        if membership is None:
            raise RecordNotFound(f"company {company_id} not found")
        return membership

    def is_member(self, user_id: str, company_id: str) -> bool:
        return self._store.get_membership(user_id, company_id) is not None

    def get_for_member(self, user_id: str, company_id: str) -> dict[str, object]:
        membership = self.require_member(user_id, company_id)
        company = self._store.get_company(company_id)
        if company is None:
            raise RecordNotFound(f"company {company_id} not found")
        return {**company, "role": membership.get("role")}

    def default_company_for(self, user_id: str) -> str | None:
        """The user's company when they belong to exactly one."""
        memberships = self._store.list_memberships(user_id)
        if len(memberships) != 1:
            return None
        return str(memberships[0]["company_id"])
