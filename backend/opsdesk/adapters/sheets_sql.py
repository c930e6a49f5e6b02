from typing import Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from opsdesk.models.sheet_row import SheetRow
from opsdesk.utils.a1 import parse_range


class SheetBackendError(Exception):
    """Raised when the tabular backing store cannot be read or written."""
    pass


def _trim(cells: List[str]) -> List[str]:
    # the Sheets API omits trailing empty cells; mirror that so callers see one shape
    out = list(cells)
    while out and (out[-1] is None or out[-1] == ""):
        out.pop()
    return out


class SqlSheetBackend:
    """
    Spreadsheet-like tabular store kept in the local database.
    Each SheetRow is one row; values are addressed with A1 notation.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def get_values(self, range_a1: str) -> List[List[str]]:
        return await run_in_threadpool(self._get_values, range_a1)

    async def batch_update(self, data: Dict[str, str]) -> int:
        return await run_in_threadpool(self._batch_update, data)

    def _get_values(self, range_a1: str) -> List[List[str]]:
        rng = parse_range(range_a1)
        try:
            with self.session_factory() as s:
                q = (
                    s.query(SheetRow)
                    .filter(SheetRow.sheet == rng.sheet, SheetRow.row_index >= rng.start_row)
                )
                if rng.end_row is not None:
                    q = q.filter(SheetRow.row_index <= rng.end_row)
                rows = {r.row_index: list(r.cells or []) for r in q.order_by(SheetRow.row_index).all()}
        except SQLAlchemyError as e:
            raise SheetBackendError(f"read {range_a1} failed: {e}") from e

        if not rows:
            return []
        end_col = rng.end_col + 1 if rng.end_col is not None else None
        values = []
        for idx in range(rng.start_row, max(rows) + 1):
            values.append(_trim(rows.get(idx, [])[rng.start_col:end_col]))
        # trailing empty rows are not returned
        while values and not values[-1]:
            values.pop()
        return values

    def _batch_update(self, data: Dict[str, str]) -> int:
        """Write single-cell ranges; all cells commit together or not at all."""
        targets = []
        for range_a1, value in data.items():
            rng = parse_range(range_a1)
            if rng.end_row != rng.start_row or rng.end_col != rng.start_col:
                raise SheetBackendError(f"batch_update only accepts single cells, got {range_a1}")
            targets.append((rng, "" if value is None else str(value)))

        try:
            with self.session_factory() as s:
                with s.begin():
                    for rng, value in targets:
                        row = (
                            s.query(SheetRow)
                            .filter(SheetRow.sheet == rng.sheet, SheetRow.row_index == rng.start_row)
                            .first()
                        )
                        if row is None:
                            row = SheetRow(sheet=rng.sheet, row_index=rng.start_row, cells=[])
                            s.add(row)
                        cells = list(row.cells or [])
                        if len(cells) <= rng.start_col:
                            cells.extend([""] * (rng.start_col + 1 - len(cells)))
                        cells[rng.start_col] = value
                        # reassign so the JSON column is flagged dirty
                        row.cells = cells
        except SQLAlchemyError as e:
            raise SheetBackendError(f"batch update failed: {e}") from e
        return len(targets)

    def append_row(self, sheet: str, cells: List[str]) -> int:
        """Append a row after the last used one and return its 1-based index (used by seeding)."""
        try:
            with self.session_factory() as s:
                with s.begin():
                    last = (
                        s.query(SheetRow.row_index)
                        .filter(SheetRow.sheet == sheet)
                        .order_by(SheetRow.row_index.desc())
                        .first()
                    )
                    # row 1 is the header row
                    row_index = (last[0] + 1) if last else 2
                    s.add(SheetRow(sheet=sheet, row_index=row_index, cells=list(cells)))
        except SQLAlchemyError as e:
            raise SheetBackendError(f"append to {sheet} failed: {e}") from e
        return row_index
