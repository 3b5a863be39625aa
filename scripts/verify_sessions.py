import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from cognimap.config import DEFAULT_DB_PATH
from cognimap.engine import progress
from cognimap.exceptions import StructuralViolation
from cognimap.session_store import get_connection, load_session

DB_PATH = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_DB_PATH


def verify():
    if not os.path.exists(DB_PATH):
        print(f"Error: {DB_PATH} not found.")
        return

    con = get_connection(DB_PATH)
    rows = con.execute("SELECT id, payload FROM Sessions ORDER BY last_accessed DESC").fetchall()
    con.close()

    broken = 0
    print("-" * 40)
    print("SESSION VERIFICATION REPORT")
    print("-" * 40)
    for r in rows:
        try:
            session = load_session(r["payload"])
        except StructuralViolation as exc:
            broken += 1
            print(f"  {r['id']}: BROKEN ({exc})")
            continue
        prog = progress(session)
        view = session.current_sub_graph_id or "root"
        print(f"  {r['id']}: {prog.completed}/{prog.total} in {view} "
              f"({len(session.root_graph.nodes)} root units)")
    print(f"\nSessions: {len(rows)}  Broken: {broken}")
    print("-" * 40)


if __name__ == "__main__":
    verify()
