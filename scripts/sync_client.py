#!/usr/bin/env python3
import argparse
import json
import logging
import os
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from pocket_ledger.offline import ApiClient, LocalStore, SyncManager


def main(argv=None):
    parser = argparse.ArgumentParser(description="Replay queued offline changes and refresh the local cache")
    parser.add_argument("--api-url", default=os.environ.get("LEDGER_API_URL", "http://localhost:5000"))
    parser.add_argument("--store", default=os.environ.get("LEDGER_STORE_PATH", "instance/offline.sqlite"))
    parser.add_argument("--timeout", type=float, default=10.0, help="Seconds before an API call is abandoned")
    parser.add_argument("--status", action="store_true", help="Only print the pending queue and last sync time")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    with LocalStore(args.store) as store:
        if args.status:
            print(json.dumps({
                "lastSyncTime": store.get_last_sync_time(),
                "pendingOperations": store.list_pending_operations(),
            }, indent=2))
            return 0

        api = ApiClient(args.api_url, timeout=args.timeout)
        errors = []

        def record_error(event, data):
            if event == "sync-error":
                errors.append(data)

        try:
            manager = SyncManager(store, api, online=False)
            manager.on_sync(record_error)
            if not manager.check_online():
                print(f"{args.api_url} is unreachable; {len(store.list_pending_operations())} operations stay queued")
                return 1
            # check_online() already ran a pass on the offline -> online transition
            remaining = len(store.list_pending_operations())
        finally:
            api.close()

    if errors:
        print(f"Sync failed: {errors[-1]}; {remaining} operations still queued")
        return 1
    print(f"Sync finished; {remaining} operations still queued")
    return 0 if remaining == 0 else 2


if __name__ == "__main__":
    sys.exit(main())
