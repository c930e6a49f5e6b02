from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Integer, String, UniqueConstraint

from opsdesk.db import Base


class SheetRow(Base):
    """One row of a spreadsheet tab; `cells` holds the column values left to right."""

    __tablename__ = "sheet_rows"
    __table_args__ = (UniqueConstraint("sheet", "row_index", name="uq_sheet_row"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    sheet = Column(String(64), nullable=False, index=True)
    row_index = Column(Integer, nullable=False)
    cells = Column(JSON, nullable=False, default=list)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self):
        return f"<SheetRow {self.sheet}!{self.row_index} cells={len(self.cells or [])}>"
