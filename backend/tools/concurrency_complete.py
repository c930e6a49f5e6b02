import argparse
import concurrent.futures
import json
import os

import requests

BASE = os.environ.get("OPSDESK_BASE", "http://127.0.0.1:8000")


def complete_task(i, row_index, send_whatsapp):
    payload = {"send_whatsapp": send_whatsapp}
    headers = {"X-Operator-Email": f"worker-{i}@local"}
    try:
        r = requests.post(
            f"{BASE}/api/refunds/{row_index}/complete", json=payload, headers=headers, timeout=60
        )
        return (i, r.status_code, r.text)
    except requests.RequestException as e:
        return (i, "ERR", str(e))


def run_complete_concurrent(workers, row_index, send_whatsapp):
    """Fire `workers` completions for one row; exactly one should come back 200."""
    print(f"Running complete test: workers={workers}, row={row_index}")
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(complete_task, i, row_index, send_whatsapp) for i in range(workers)]
        results = [f.result() for f in futures]
    for r in results:
        print(r)
    ok = [r for r in results if r[1] == 200]
    rejected = [r for r in results if r[1] == 400]
    print(f"completed={len(ok)} already_completed={len(rejected)} other={len(results) - len(ok) - len(rejected)}")
    if ok:
        print("Winner:", json.loads(ok[0][2]).get("data"))


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrent refund completion check.")
    parser.add_argument("--row", type=int, required=True)
    parser.add_argument("--workers", type=int, default=8)
    parser.add_argument("--notify", action="store_true", help="send the customer WhatsApp too")
    args = parser.parse_args()
    run_complete_concurrent(args.workers, args.row, args.notify)
