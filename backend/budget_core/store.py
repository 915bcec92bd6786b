from datetime import datetime, timezone
from uuid import uuid4


class InMemoryStore:
    def __init__(self) -> None:
        self.transactions: dict[str, dict] = {}
        self.categories: dict[str, dict] = {}
        self.goals: dict[str, dict] = {}
        self.system_budgets: dict[str, dict] = {}
        self.custom_budgets: dict[str, dict] = {}
        self.user_settings: dict[str, dict] = {}

    def table(self, name: str) -> dict[str, dict]:
        return getattr(self, name)

    def clear(self) -> None:
        for name in ("transactions", "categories", "goals", "system_budgets", "custom_budgets", "user_settings"):
            self.table(name).clear()

    @staticmethod
    def make_id() -> str:
        return str(uuid4())

    @staticmethod
    def now() -> str:
        return datetime.now(timezone.utc).isoformat()


store = InMemoryStore()
