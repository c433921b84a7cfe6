"""
Audit stored certificate hashes and optionally backfill the missing ones.

Usage: python backfill_certificate_hashes.py [--fix]
"""
import argparse
import sys

from app import create_app
from certificate import audit_certificate_hashes
from storage import get_storage


def main(argv=None, app=None):
    parser = argparse.ArgumentParser(description='Audit certificate hashes')
    parser.add_argument('--fix', action='store_true', help='write hashes for certificates that have none')
    args = parser.parse_args(argv)

    app = app or create_app()
    with app.app_context():
        audit = audit_certificate_hashes(get_storage(), fix_missing=args.fix)

    print(f"Checked {audit.checked} certificate(s).")
    print(f"Missing hash: {len(audit.missing)}" + (f" ({', '.join(audit.missing)})" if audit.missing else ''))
    if args.fix:
        print(f"Backfilled: {len(audit.fixed)}")
    if audit.mismatched:
        print(f"Mismatched hash: {len(audit.mismatched)} ({', '.join(audit.mismatched)})")
        return 2
    return 0


if __name__ == '__main__':
    sys.exit(main())
