import re
from typing import NamedTuple, Optional


class A1Range(NamedTuple):
    sheet: str
    start_col: int  # 0-based
    start_row: int  # 1-based
    end_col: Optional[int]  # inclusive, None = open ended
    end_row: Optional[int]  # inclusive, None = open ended


_CELL = re.compile(r"^([A-Z]+)(\d*)$")


def column_letter(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA"""
    if index < 0:
        raise ValueError("column index must be >= 0")
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def column_index(letters: str) -> int:
    """A -> 0, Z -> 25, AA -> 26"""
    value = 0
    for ch in letters.upper():
        if not "A" <= ch <= "Z":
            raise ValueError(f"Invalid column letters: {letters!r}")
        value = value * 26 + (ord(ch) - ord("A") + 1)
    return value - 1


def cell(sheet: str, col: int, row: int) -> str:
    return f"{sheet}!{column_letter(col)}{row}"


def parse_range(range_a1: str) -> A1Range:
    """
    Parse "SHEET!A2:AB", "SHEET!AA5" or "SHEET!A5:AB5".
    A bare cell is a 1x1 range; a missing end row means "to the last row".
    """
    if "!" not in range_a1:
        raise ValueError(f"Range must include a sheet name: {range_a1!r}")
    sheet, ref = range_a1.rsplit("!", 1)
    sheet = sheet.strip("'")
    start, _, end = ref.upper().partition(":")

    m = _CELL.match(start)
    if not m or not m.group(2):
        raise ValueError(f"Invalid range start: {range_a1!r}")
    start_col, start_row = column_index(m.group(1)), int(m.group(2))

    if not end:
        return A1Range(sheet, start_col, start_row, start_col, start_row)

    m = _CELL.match(end)
    if not m:
        raise ValueError(f"Invalid range end: {range_a1!r}")
    end_col = column_index(m.group(1))
    end_row = int(m.group(2)) if m.group(2) else None
    return A1Range(sheet, start_col, start_row, end_col, end_row)
