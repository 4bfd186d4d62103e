#!/usr/bin/env python
"""Return the emails of failed provider batches to the backlog.

A failed provider batch leaves its user batches in processing. Releasing it
deletes its provider-batch email links so the batch creator collects those
emails again; the failed batch row is kept.

Usage:
    python scripts/release_failed_batch.py deliverable <bouncer_batch_id> [...]
    python scripts/release_failed_batch.py catchall --all-failed
"""
import argparse
import sys

from bulkverify.db.base import SessionLocal
from bulkverify.db.modes import parse_mode
from bulkverify.services.queue import gateway


def main():
    parser = argparse.ArgumentParser(description="Release failed provider batches")
    parser.add_argument("mode", help="deliverable or catchall")
    parser.add_argument("batch_ids", nargs="*", help="Bouncer batch ids to release")
    parser.add_argument("--all-failed", action="store_true", help="Release every failed batch of the mode")
    args = parser.parse_args()

    mode = parse_mode(args.mode)
    if mode is None:
        parser.error(f"unknown mode: {args.mode}")
    if not args.batch_ids and not args.all_failed:
        parser.error("give batch ids or --all-failed")

    db = SessionLocal()
    exit_code = 0
    try:
        batch_ids = list(args.batch_ids)
        if args.all_failed:
            failed = gateway.list_releasable_failed_batches(db, mode)
            if not failed.ok:
                print(f"Could not list failed batches: {failed.error.message}")
                sys.exit(1)
            batch_ids.extend(failed.value)

        for bouncer_batch_id in batch_ids:
            result = gateway.release_failed_provider_batch(db, mode, bouncer_batch_id)
            if result.ok:
                print(f"{bouncer_batch_id}: released {result.value} emails")
            else:
                print(f"{bouncer_batch_id}: {result.error.message}")
                exit_code = 1
    finally:
        db.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
