"""Maintenance commands: database setup and emergency contacts.

Usage:
    python -m safetrail.scripts.manage init-db
    python -m safetrail.scripts.manage add-contact "Alex" "+15551234567"
    python -m safetrail.scripts.manage list-contacts
    python -m safetrail.scripts.manage disable-contact 3
"""
import argparse

from safetrail import database as db
from safetrail.services.store import SqlStore


def main(argv: list[str] | None = None, store: SqlStore | None = None) -> int:
    parser = argparse.ArgumentParser(description="SafeTrail maintenance commands")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create missing tables")

    add = sub.add_parser("add-contact", help="Add an emergency contact")
    add.add_argument("name")
    add.add_argument("phone_number")
    add.add_argument("--disabled", action="store_true", help="Add the contact without enabling alerts")

    sub.add_parser("list-contacts", help="List emergency contacts")

    for name in ("enable-contact", "disable-contact", "remove-contact"):
        cmd = sub.add_parser(name)
        cmd.add_argument("contact_id", type=int)

    args = parser.parse_args(argv)

    if args.command == "init-db":
        db.init_db(db.engine if store is None else store.engine)
        print("Database ready")
        return 0

    store = store or SqlStore(db.engine)

    if args.command == "add-contact":
        contact = store.add_contact(args.name, args.phone_number, is_enabled=not args.disabled)
        print(f"Added contact {contact.id}: {contact.name} <{contact.phone_number}>")
        return 0

    if args.command == "list-contacts":
        contacts = store.list_contacts()
        if not contacts:
            print("No emergency contacts configured")
        for c in contacts:
            flag = "enabled" if c.is_enabled else "disabled"
            print(f"{c.id}\t{c.name}\t{c.phone_number}\t{flag}")
        return 0

    if args.command == "remove-contact":
        ok = store.delete_contact(args.contact_id)
    else:
        ok = store.set_contact_enabled(args.contact_id, args.command == "enable-contact")

    if not ok:
        print(f"Contact {args.contact_id} not found")
        return 1
    print("OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
