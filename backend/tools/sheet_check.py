import json
import sqlite3
import sys

DB = sys.argv[1] if len(sys.argv) > 1 else "dev.db"
SHEET = sys.argv[2] if len(sys.argv) > 2 else "REGISTRO"
ROW = int(sys.argv[3]) if len(sys.argv) > 3 else None

# refund status and refund data columns (W, AA)
STATUS_COL = 22
DATA_COL = 26

conn = sqlite3.connect(DB)
cur = conn.cursor()

print(f"=== Refund rows in {SHEET} ===")
if ROW:
    cur.execute(
        "SELECT row_index, cells, updated_at FROM sheet_rows WHERE sheet=? AND row_index=?",
        (SHEET, ROW),
    )
else:
    cur.execute(
        "SELECT row_index, cells, updated_at FROM sheet_rows WHERE sheet=? ORDER BY row_index LIMIT 50",
        (SHEET,),
    )
for row_index, cells, updated_at in cur.fetchall():
    cells = json.loads(cells) if isinstance(cells, str) else cells
    status = cells[STATUS_COL] if len(cells) > STATUS_COL else ""
    data = cells[DATA_COL] if len(cells) > DATA_COL else ""
    try:
        data = json.loads(data) if data else {}
    except ValueError:
        pass
    print(
        {
            "row": row_index,
            "order": cells[0] if cells else "",
            "status": status,
            "data": data,
            "updated_at": updated_at,
        }
    )

conn.close()
