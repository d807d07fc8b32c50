import argparse
import json
from dataclasses import asdict

from . import __version__
from .config import get_settings
from .database import get_session, init_database, session_factory
from .env import load_env
from .errors import NoIdentifiableContact, RecordNotFound, ReliabilityNetError
from .logger import get_logger
from .network import LOOKUP_KINDS, PROPERTY_SEARCH_KINDS, SEARCH_KINDS, NetworkService, classify_query
from .schema import validate_event
from .scoring import business_scores, calculate_percentile, score_customer
from .sync import (
    bootstrap_from_properties,
    import_property_owners,
    resync_all_customers,
    sync_business_customers,
)


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


def _print_profile(profile) -> None:
    print(f"Identity: {profile.identity_id}")
    print(f"Risk tier: {profile.risk_tier.value}")
    print(f"Incidents: {profile.total_incidents}")
    if profile.last_incident_at:
        print(f"Last incident: {profile.last_incident_at:%Y-%m-%d}")


def cmd_init_db(args: argparse.Namespace) -> None:
    init_database(args.db)
    print(f"Initialized database: {args.db}")


def cmd_resolve(args: argparse.Namespace) -> None:
    service = NetworkService(session_factory(args.db))
    try:
        resolved = service.resolve(phone=args.phone, email=args.email, address=args.address)
    except NoIdentifiableContact:
        raise SystemExit("No usable phone, email or address given.")
    print(f"Identity: {resolved.identity_id}")
    print(f"Status: {'created' if resolved.created else 'matched'}")
    print(f"Risk tier: {resolved.risk_tier.value}")


def cmd_apply_event(args: argparse.Namespace) -> None:
    errors = validate_event({"severity": args.severity})
    if errors:
        print("Invalid:")
        for e in errors:
            print(f" - {e}")
        raise SystemExit(2)

    service = NetworkService(session_factory(args.db))
    if args.identity:
        profile = service.apply_event(args.identity, args.severity)
    else:
        profile = service.record_event(args.phone, args.email, args.severity, address=args.address)
        if profile is None:
            print("No identifiable contact; event not shared with the network.")
            return
    _print_profile(profile)


def _print_property(prop) -> None:
    owners = " & ".join(n for n in (prop.owner_name, prop.owner_name_secondary) if n)
    place = ", ".join(p for p in (prop.municipality, prop.county) if p)
    print(f"  {prop.address_full or '(no address)'} | {owners or '(no owner)'}" + (f" | {place}" if place else ""))


def cmd_lookup(args: argparse.Namespace) -> None:
    if args.query:
        kind = classify_query(args.query)
        if kind not in SEARCH_KINDS:
            raise SystemExit("Could not tell what the query is; pass a phone, email, address or owner name.")
        value = args.query
    else:
        kind, value = next(
            (
                (k, v)
                for k, v in (("phone", args.phone), ("email", args.email), ("address", args.address), ("name", args.name))
                if v
            ),
            (None, None),
        )
        if kind is None:
            raise SystemExit("Pass --phone, --email, --address, --name or --query.")

    service = NetworkService(session_factory(args.db))
    result = service.search(kind, value)

    if kind in LOOKUP_KINDS:
        if result.profile is None:
            print("Not found in network.")
        else:
            _print_profile(result.profile)
            print(f"Seen by businesses: {result.profile.seen_by_business_count}")
            linked = service.linked_property(result.profile.identity_id)
            if linked is not None:
                print("Linked property:")
                _print_property(linked)

    if kind in PROPERTY_SEARCH_KINDS:
        print(f"Property records: {len(result.properties)}")
        for prop in result.properties:
            _print_property(prop)


def cmd_score(args: argparse.Namespace) -> None:
    session = get_session(args.db)
    try:
        analytics = score_customer(session, args.business, args.customer)
        percentile = calculate_percentile(analytics.score, business_scores(session, args.business))
    finally:
        session.close()
    _print_json({**asdict(analytics), "percentile": percentile})


def cmd_sync_business(args: argparse.Namespace) -> None:
    session = get_session(args.db)
    try:
        report = sync_business_customers(session, args.business, limit=args.limit)
    finally:
        session.close()
    if report.already_synced:
        print("Business already synced with the network.")
        return
    _print_json(report.to_dict())


def cmd_resync(args: argparse.Namespace) -> None:
    session = get_session(args.db)
    try:
        report = resync_all_customers(session, business_id=args.business, limit=args.limit)
    finally:
        session.close()
    _print_json(report.to_dict())


def cmd_bootstrap_properties(args: argparse.Namespace) -> None:
    session = get_session(args.db)
    try:
        report = bootstrap_from_properties(
            session,
            limit=args.limit,
            county=args.county,
            municipality=args.municipality,
        )
    finally:
        session.close()
    _print_json(report.to_dict())


def cmd_import_owners(args: argparse.Namespace) -> None:
    session = get_session(args.db)
    try:
        report = import_property_owners(session, args.business, limit=args.limit)
    finally:
        session.close()
    _print_json(report.to_dict())


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(
        prog="reliabilitynet",
        description="Customer reliability scoring and the shared identity network",
    )
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument(
        "--db",
        default=settings.DATABASE_URL,
        help="SQLite file path or database URL (default: $RELIABILITYNET_DATABASE_URL)",
    )

    subparsers = parser.add_subparsers(dest="command")

    ini = subparsers.add_parser("init-db", help="Create all tables")
    ini.set_defaults(func=cmd_init_db)

    res = subparsers.add_parser("resolve", help="Find or create the network identity for a contact")
    res.add_argument("--phone", help="Phone number, any formatting")
    res.add_argument("--email", help="Email address")
    res.add_argument("--address", help="Postal address")
    res.set_defaults(func=cmd_resolve)

    evt = subparsers.add_parser("apply-event", help="Fold one event into a network identity")
    evt.add_argument("--severity", type=int, required=True, help="Event severity 1-5 (3 and up is an incident)")
    evt.add_argument("--identity", help="Network identity id (otherwise resolved from contact details)")
    evt.add_argument("--phone", help="Phone number")
    evt.add_argument("--email", help="Email address")
    evt.add_argument("--address", help="Postal address")
    evt.set_defaults(func=cmd_apply_event)

    lku = subparsers.add_parser("lookup", help="Read-only network search")
    lku.add_argument("--phone", help="Phone number")
    lku.add_argument("--email", help="Email address")
    lku.add_argument("--address", help="Postal address")
    lku.add_argument("--name", help="Property owner name, e.g. \"Jane Doe\" or \"DOE, JANE\"")
    lku.add_argument("--query", help="Free text; classified as phone, email, address or name")
    lku.set_defaults(func=cmd_lookup)

    sco = subparsers.add_parser("score", help="Score one customer from their business's own events")
    sco.add_argument("--business", required=True, help="Business id")
    sco.add_argument("--customer", required=True, help="Customer id")
    sco.set_defaults(func=cmd_score)

    syn = subparsers.add_parser("sync-business", help="Opt a business into the network and sync its customers")
    syn.add_argument("--business", required=True, help="Business id")
    syn.add_argument("--limit", type=int, help="Optional limit on customers processed")
    syn.set_defaults(func=cmd_sync_business)

    rsy = subparsers.add_parser("resync", help="Re-resolve customers of one or all businesses")
    rsy.add_argument("--business", help="Restrict to one business id")
    rsy.add_argument("--limit", type=int, help="Optional limit on customers processed")
    rsy.set_defaults(func=cmd_resync)

    bts = subparsers.add_parser(
        "bootstrap-properties",
        help="Create identities from residential property records",
        description=(
            "Create identities from residential property records. The JSON report counts "
            "created (new identity), linked (joined to an identity that already held the "
            "address) and skipped (invalid, business-owned, address-less or failed) properties; "
            "created + linked + skipped == total."
        ),
    )
    bts.add_argument("--limit", type=int, default=settings.BATCH_LIMIT, help="Max properties per run")
    bts.add_argument("--county", help="Restrict to one county")
    bts.add_argument("--municipality", help="Restrict to one municipality")
    bts.set_defaults(func=cmd_bootstrap_properties)

    imp = subparsers.add_parser("import-owners", help="Import property owners as customers of a business")
    imp.add_argument("--business", required=True, help="Business id")
    imp.add_argument("--limit", type=int, default=settings.BATCH_LIMIT, help="Max property records read")
    imp.set_defaults(func=cmd_import_owners)

    return parser


def main(argv=None):
    # Load .env if present (RELIABILITYNET_DATABASE_URL, etc.)
    load_env()
    get_settings.cache_clear()
    settings = get_settings()
    get_logger().configure(level=settings.LOG_LEVEL, log_dir=settings.LOG_DIR)

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(__version__)
        return

    if hasattr(args, "func"):
        try:
            args.func(args)
        except RecordNotFound as e:
            raise SystemExit(str(e))
        except ReliabilityNetError as e:
            raise SystemExit(f"{e.__class__.__name__}: {e}")
        return

    parser.print_help()


if __name__ == "__main__":
    main()
