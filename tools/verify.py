#!/usr/bin/env python3
"""
BaseProofs Integrity Verifier

Checks a promise text against anchored digests without a server.
Digests come from baseproofs.core.hasher, the same code the API uses.

The text is digested exactly as given: no trimming, no newline stripping,
no Unicode normalization. One differing byte means no match.

Usage:
    python verify.py "I will run a marathon" --records export.json
    python verify.py --file promise.txt --records export.json
    cat promise.txt | python verify.py - --digest 0x1234...
    python verify.py "I will run a marathon" --records export.json --json

The records file is a JSON array of promise records (as written by
`manage.py export` or the JSON file cache); only each record's "digest"
is required.

Exit codes:
    0 - MATCH: The text matches an anchored digest
    1 - NO_MATCH: No record carries this digest
    3 - INVALID_INPUT: Missing text, unreadable records, malformed digest
"""

import argparse
import json
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

sys.path.insert(0, str(Path(__file__).parent.parent))

from baseproofs.core.hasher import DigestFormatError, Hasher  # noqa: E402


# ============================================================
# Result Types
# ============================================================

class VerificationResult(Enum):
    MATCH = "MATCH"
    NO_MATCH = "NO_MATCH"
    INVALID_INPUT = "INVALID_INPUT"


@dataclass
class VerificationReport:
    result: VerificationResult
    digest: Optional[str]
    record: Optional[dict[str, Any]] = None
    errors: list[str] = field(default_factory=list)


EXIT_CODES = {
    VerificationResult.MATCH: 0,
    VerificationResult.NO_MATCH: 1,
    VerificationResult.INVALID_INPUT: 3,
}


class InputError(Exception):
    """Raised when the verifier's input cannot be used."""
    pass


# ============================================================
# Digest
# ============================================================

def normalize_digest(value: str) -> str:
    """Hasher.normalize_digest, reporting malformed values as InputError."""
    try:
        return Hasher.normalize_digest(value)
    except DigestFormatError as e:
        raise InputError(str(e)) from e


# ============================================================
# Input
# ============================================================

def read_text(args: argparse.Namespace) -> str:
    """Text from --file, stdin ('-'), or the positional argument."""
    if args.file:
        path = Path(args.file)
        try:
            # newline="" keeps \r\n intact; the digest covers exact bytes
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except (OSError, UnicodeDecodeError) as e:
            raise InputError(f"Cannot read {path}: {e}") from e

    if args.text == "-":
        try:
            return sys.stdin.buffer.read().decode("utf-8")
        except UnicodeDecodeError as e:
            raise InputError(f"stdin is not valid UTF-8: {e}") from e

    if args.text is None:
        raise InputError("No text given (pass TEXT, --file, or '-' for stdin)")
    return args.text


def load_records(path_value: str) -> list[dict[str, Any]]:
    path = Path(path_value)
    if not path.exists():
        raise InputError(f"File not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise InputError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise InputError(f"Failed to read {path}: {e}") from e

    if not isinstance(data, list):
        raise InputError(f"{path} must contain a JSON array of records")
    for i, item in enumerate(data):
        if not isinstance(item, dict) or not isinstance(item.get("digest"), str):
            raise InputError(f"Record {i} in {path} has no digest")
    return data


# ============================================================
# Verification
# ============================================================

def verify(text: str, records: list[dict[str, Any]], expected_digest: Optional[str] = None) -> VerificationReport:
    digest = Hasher.digest(text)

    if expected_digest is not None:
        if digest == normalize_digest(expected_digest):
            return VerificationReport(VerificationResult.MATCH, digest)
        return VerificationReport(VerificationResult.NO_MATCH, digest)

    for record in records:
        try:
            if normalize_digest(record["digest"]) == digest:
                return VerificationReport(VerificationResult.MATCH, digest, record=record)
        except InputError:
            continue
    return VerificationReport(VerificationResult.NO_MATCH, digest)


# ============================================================
# CLI
# ============================================================

def print_report(report: VerificationReport, json_output: bool = False):
    """Print verification report."""

    if json_output:
        output = {
            "result": report.result.value,
            "digest": report.digest,
            "record": report.record,
            "errors": report.errors,
        }
        print(json.dumps(output, indent=2, ensure_ascii=False))
        return

    print("\n" + "=" * 60)
    if report.result == VerificationResult.MATCH:
        print("  [MATCH] - Text matches an anchored promise")
    elif report.result == VerificationResult.NO_MATCH:
        print("  [NO_MATCH] - No anchored promise has this digest")
    else:
        print("  [INVALID_INPUT] - Nothing was verified")
    print("=" * 60)

    if report.digest:
        print(f"\nDigest:  {report.digest}")

    if report.record:
        print(f"Creator: {report.record.get('creator_display_name', 'unknown')}")
        print(f"Address: {report.record.get('creator_address', 'unknown')}")
        print(f"Status:  {report.record.get('status', 'unknown')}")
        if report.record.get("source_tx_id"):
            print(f"Tx:      {report.record['source_tx_id']}")

    for error in report.errors:
        print(f"  - {error}")

    print()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Verify a promise text against anchored digests",
        epilog="Exit codes: 0=MATCH, 1=NO_MATCH, 3=INVALID_INPUT"
    )
    parser.add_argument(
        "text",
        nargs="?",
        help="Promise text, or '-' to read stdin"
    )
    parser.add_argument(
        "--file", "-f",
        help="Read the promise text from a file"
    )
    parser.add_argument(
        "--records", "-r",
        help="JSON array of promise records to check against"
    )
    parser.add_argument(
        "--digest", "-d",
        help="Check against one digest instead of a records file"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output result as JSON"
    )

    args = parser.parse_args(argv)

    try:
        if not args.records and not args.digest:
            raise InputError("Pass --records FILE or --digest DIGEST")
        text = read_text(args)
        records = load_records(args.records) if args.records else []
        report = verify(text, records, expected_digest=args.digest)
    except InputError as e:
        report = VerificationReport(VerificationResult.INVALID_INPUT, None, errors=[str(e)])

    print_report(report, json_output=args.json)
    return EXIT_CODES[report.result]


if __name__ == "__main__":
    sys.exit(main())
