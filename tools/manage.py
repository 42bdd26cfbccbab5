#!/usr/bin/env python3
"""
BaseProofs Management CLI

Commands for managing the promise cache and inspecting the ledger:
- sync: Scan the ledger once and report what it holds
- export: Export cached (or merged) promises to JSON
- import: Load promises from JSON into the cache
- digest: Print the digest of a promise text
- decode: Decode anchorProof call data

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage sync
    python -m tools.manage export --merged -o promises.json
    python -m tools.manage digest "I will run a marathon"
    python -m tools.manage decode 0x7a5b...
"""

import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def cmd_sync(args):
    """Run one sync cycle and print a summary."""
    from baseproofs.runtime import create_runtime

    runtime = create_runtime()
    try:
        contract = runtime.sync.contract_address
        print(f"Scanning ledger {contract or '(none configured)'}...")
        result = runtime.sync.refresh(runtime.cache.load())
    finally:
        runtime.close()

    if result.fresh:
        print("  Chain: [OK] Fresh")
    else:
        print(f"  Chain: [STALE] {result.error}")

    if result.scan is not None and result.scan.ok:
        print(f"  Anchor events: {len(result.scan.events)}")
        if result.scan.fetch_failures:
            print(f"  Call-data fetch failures: {result.scan.fetch_failures}")
        if result.scan.abandoned:
            print(f"  Abandoned fetches: {result.scan.abandoned}")

    print(f"  Chain promises: {len(result.chain_records)}")
    print(f"  Merged promises: {len(result.records)}")
    return 0 if result.fresh else 1


def cmd_export(args):
    """Export promises to a JSON file."""
    from baseproofs.db.cache import records_to_json
    from baseproofs.runtime import create_runtime

    runtime = create_runtime()
    try:
        records = runtime.cache.load()
        if args.merged:
            result = runtime.sync.refresh(records)
            if not result.fresh:
                print(f"[WARN] Chain unavailable ({result.error}); exporting cache only")
            records = result.records
    finally:
        runtime.close()

    output_file = args.output or "promises_export.json"
    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(records_to_json(records), f, indent=2, ensure_ascii=False)

    print(f"[OK] Exported {len(records)} promises to {output_file}")


def cmd_import(args):
    """Load promises from a JSON file into the cache."""
    from baseproofs.db.cache import CacheError, records_from_json
    from baseproofs.runtime import create_cache

    try:
        with open(args.input, "r", encoding="utf-8") as f:
            incoming = records_from_json(json.load(f))
    except (OSError, json.JSONDecodeError, CacheError) as e:
        print(f"ERROR: Cannot import {args.input}: {e}")
        return 3

    cache = create_cache()
    try:
        if args.replace:
            cache.store(incoming)
            print(f"[OK] Replaced cache with {len(incoming)} promises")
            return 0

        existing = cache.load()
        known = {r.digest.lower() for r in existing}
        added = [r for r in incoming if r.digest.lower() not in known]
        cache.store(tuple(added) + tuple(existing))
        print(f"[OK] Imported {len(added)} promises ({len(incoming) - len(added)} already cached)")
    finally:
        cache.close()


def cmd_digest(args):
    """Print the digest of a promise text."""
    from baseproofs.core import Hasher

    if args.file:
        with open(args.file, "r", encoding="utf-8", newline="") as f:
            text = f.read()
    elif args.text is not None:
        text = args.text
    else:
        print("ERROR: Pass TEXT or --file")
        return 3

    print(Hasher.digest(text))


def cmd_decode(args):
    """Decode anchorProof call data into its payload."""
    from baseproofs.core import decode
    from baseproofs.core.codec import from_hex

    try:
        call_data = from_hex(args.call_data)
    except ValueError as e:
        print(f"ERROR: Not hex: {e}")
        return 3

    decoded = decode(call_data)
    print(json.dumps(decoded.model_dump(mode="json", by_alias=False), indent=2, ensure_ascii=False))


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="BaseProofs Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # sync
    subparsers.add_parser(
        "sync",
        help="Scan the ledger once and report"
    )

    # export
    p_export = subparsers.add_parser(
        "export",
        help="Export promises to JSON"
    )
    p_export.add_argument("--output", "-o", help="Output file (default: promises_export.json)")
    p_export.add_argument("--merged", action="store_true", help="Include chain-derived promises")

    # import
    p_import = subparsers.add_parser(
        "import",
        help="Import promises from JSON"
    )
    p_import.add_argument("input", help="JSON array of promise records")
    p_import.add_argument("--replace", action="store_true", help="Replace the cache instead of merging")

    # digest
    p_digest = subparsers.add_parser(
        "digest",
        help="Print the digest of a promise text"
    )
    p_digest.add_argument("text", nargs="?", help="Promise text")
    p_digest.add_argument("--file", "-f", help="Read the text from a file")

    # decode
    p_decode = subparsers.add_parser(
        "decode",
        help="Decode anchorProof call data"
    )
    p_decode.add_argument("call_data", help="0x-prefixed call data")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "sync": cmd_sync,
        "export": cmd_export,
        "import": cmd_import,
        "digest": cmd_digest,
        "decode": cmd_decode,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
