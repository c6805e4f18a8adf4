from typing import Optional

from .borrowing import BorrowingRegistry
from .catalog import Catalog
from .config import settings
from .database import Database
from .guard import ReferentialGuard


class Library:
    """Wires the circulation services to one database file."""

    def __init__(self, db_file: Optional[str] = None, db: Optional[Database] = None) -> None:
        self.db = db or Database(db_file)
        self.db.initialize()  # Ensure tables exist
        self.guard = ReferentialGuard(self.db)
        self.catalog = Catalog(self.db, self.guard)
        self.borrowing = BorrowingRegistry(self.db, settings.daily_fine_rate)

    @property
    def db_file(self) -> str:
        return self.db.db_file
