# backend/caseflow/cli/__main__.py
from __future__ import annotations

import argparse
import json

from ..db import SessionLocal, init_db
from ..logging_config import configure_logging
from ..services.negotiation import QuoteNegotiation
from ..services.nudges import nudge_unconfirmed_jobs
from .seed_demo import seed_demo


def _seed(args: argparse.Namespace) -> dict:
    out = seed_demo(org_slug=args.org_slug, org_name=args.org_name, landlord_email=args.landlord_email)
    return {
        "ok": True,
        "org_slug": out.org_slug,
        "landlord_email": out.landlord_email,
        "contractor_emails": out.contractor_emails,
        "case_ids": out.case_ids,
    }


def _nudge(args: argparse.Namespace) -> dict:
    init_db()
    db = SessionLocal()
    try:
        report = nudge_unconfirmed_jobs(db, hours=args.hours)
    finally:
        db.close()
    return {"ok": True, "checked": report.checked, "nudged": report.nudged, "delivered": report.delivered}


def _expire(args: argparse.Namespace) -> dict:
    init_db()
    db = SessionLocal()
    try:
        expired = QuoteNegotiation(db).expire_stale_quotes()
    finally:
        db.close()
    return {"ok": True, "expired": expired}


def main(argv: list[str] | None = None) -> None:
    p = argparse.ArgumentParser(prog="caseflow")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("seed-demo", help="create a demo org with contractors and cases")
    s.add_argument("--org-slug", default="demo")
    s.add_argument("--org-name", default="Demo Properties")
    s.add_argument("--landlord-email", default="owner@demo.local")
    s.set_defaults(func=_seed)

    n = sub.add_parser("nudge-unconfirmed", help="remind contractors about approved jobs they have not confirmed")
    n.add_argument("--hours", type=int, default=None)
    n.set_defaults(func=_nudge)

    e = sub.add_parser("expire-quotes", help="expire open quotes past their expiry date")
    e.set_defaults(func=_expire)

    args = p.parse_args(argv)
    configure_logging()
    print(json.dumps(args.func(args)))


if __name__ == "__main__":
    main()
