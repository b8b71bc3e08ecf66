from __future__ import annotations

import argparse
import asyncio
import json
import logging

from .analysis import SAMPLE_MEDS, Analyzer
from .basket import Checkout, compare_pharmacies
from .config import REQUIRED_KEYS, Config, resolve_storage_path
from .errors import AnalysisFailedError, CheckoutStateError, ValidationError
from .models import ImagePayload, Location, PriceRecord
from .oracle import GeminiClient
from .report import (
    build_basket_report,
    map_view_url,
    record_summary_text,
    reservation_message,
    share_text,
)
from .store import CollectionStore, JsonFileStorage
from .pricing import format_price

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="medprice")
    p.add_argument("--version", action="store_true", help="Print version and exit")
    p.add_argument(
        "--log-level",
        default="WARNING",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Python logging level",
    )
    p.add_argument("--storage", default=None, help="Path of the JSON storage file")

    sub = p.add_subparsers(dest="cmd", required=False)

    p_config = sub.add_parser("config", help="Config commands")
    sub_config = p_config.add_subparsers(dest="config_cmd", required=True)

    sub_config.add_parser("keys", help="List required config keys")

    p_check = sub_config.add_parser("check", help="Validate config is filled")
    p_check.add_argument("--source", choices=("env", "infisical"), default="env")
    p_check.add_argument("--env", default="dev")

    p_search = sub.add_parser("search", help="Compare prices for a medication")
    p_search.add_argument("query", nargs="?", default="", help="Medication name (e.g. 'Paracetamol 500mg')")
    p_search.add_argument("--image", help="Photo of the box or prescription")
    p_search.add_argument("--lat", type=float, help="Latitude to bias map results")
    p_search.add_argument("--lng", type=float, help="Longitude to bias map results")
    p_search.add_argument("--generic", action="store_true", help="Follow up with the generic alternative")
    p_search.add_argument("--save", action="store_true", help="Toggle the result in saved prescriptions")
    p_search.add_argument("--basket", action="store_true", help="Add the result to the basket")
    p_search.add_argument("--share", action="store_true", help="Print a shareable summary line")
    p_search.add_argument("--json", action="store_true", help="Print the record as JSON")
    p_search.add_argument("--source", choices=("env", "infisical"), default="env")
    p_search.add_argument("--env", default="dev")

    sub.add_parser("samples", help="List sample medications to try")

    p_history = sub.add_parser("history", help="Search history")
    sub_history = p_history.add_subparsers(dest="history_cmd", required=True)
    sub_history.add_parser("list", help="Show recent searches")
    sub_history.add_parser("clear", help="Forget all recent searches")

    p_saved = sub.add_parser("saved", help="Saved prescriptions")
    sub_saved = p_saved.add_subparsers(dest="saved_cmd", required=True)
    sub_saved.add_parser("list", help="Show saved prescriptions")
    p_toggle = sub_saved.add_parser("toggle", help="Save or unsave a medication")
    p_toggle.add_argument("name")
    sub_saved.add_parser("to-basket", help="Add every saved prescription to the basket")

    p_basket = sub.add_parser("basket", help="Basket commands")
    sub_basket = p_basket.add_subparsers(dest="basket_cmd", required=True)
    sub_basket.add_parser("list", help="Show basket items")
    p_badd = sub_basket.add_parser("add", help="Add a known medication to the basket")
    p_badd.add_argument("name")
    p_bremove = sub_basket.add_parser("remove", help="Remove a medication from the basket")
    p_bremove.add_argument("name")
    sub_basket.add_parser("clear", help="Empty the basket")
    p_compare = sub_basket.add_parser("compare", help="Totals at pharmacies that carry every item")
    p_compare.add_argument("--out", default=None, help="Also write a JSON report here")

    p_checkout = sub.add_parser("checkout", help="Reserve basket items at one pharmacy")
    p_checkout.add_argument("pharmacy")
    p_checkout.add_argument("--exclude", action="append", default=[], help="Leave an item out (repeatable)")
    p_checkout.add_argument("--confirm", action="store_true", help="Confirm the reservation")

    return p


def _load_config(args) -> Config:
    if getattr(args, "source", "env") == "infisical":
        return Config.load_from_infisical(env=args.env)
    return Config.load_from_env()


def _open_store(args, cfg: Config | None = None) -> CollectionStore:
    path = args.storage or (cfg.storage_path if cfg else resolve_storage_path())
    return CollectionStore(JsonFileStorage(path))


def _print_records(records: tuple[PriceRecord, ...], empty: str) -> None:
    if not records:
        print(empty)
        return
    for i, r in enumerate(records, 1):
        print(f"{i}. {r.medication_name}  {r.dosage}  avg {r.average_price}")


def main(argv: list[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)

    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")

    if args.version:
        print("0.1.0")
        return 0

    if args.cmd is None:
        p.print_help()
        return 0

    if args.cmd == "config":
        if args.config_cmd == "keys":
            for k in REQUIRED_KEYS:
                print(k)
            return 0

        if args.config_cmd == "check":
            # Intentionally do not print secret values
            _load_config(args)
            print(f"OK: config present (source={args.source})")
            return 0

    if args.cmd == "samples":
        for med in SAMPLE_MEDS:
            print(med)
        return 0

    if args.cmd == "search":
        return _run_search(args)

    store = _open_store(args)

    if args.cmd == "history":
        if args.history_cmd == "list":
            _print_records(store.history, "No recent searches.")
            return 0
        if args.history_cmd == "clear":
            store.clear_history()
            print("OK: history cleared.")
            return 0

    if args.cmd == "saved":
        if args.saved_cmd == "list":
            _print_records(store.saved, "No saved prescriptions.")
            return 0
        if args.saved_cmd == "toggle":
            record = store.find(args.name)
            if record is None:
                print(f"Unknown medication: {args.name} (search for it first)")
                return 1
            now_saved = store.toggle_saved(record)
            print(f"{'Saved' if now_saved else 'Removed'}: {record.medication_name}")
            return 0
        if args.saved_cmd == "to-basket":
            added = store.add_all_saved_to_basket()
            print(f"OK: added {added} items to the basket.")
            return 0

    if args.cmd == "basket":
        if args.basket_cmd == "list":
            _print_records(store.basket, "Your basket is empty")
            return 0
        if args.basket_cmd == "add":
            record = store.find(args.name)
            if record is None:
                print(f"Unknown medication: {args.name} (search for it first)")
                return 1
            if store.add_to_basket(record):
                print(f"OK: added {record.medication_name}.")
            else:
                print(f"{record.medication_name} is already in the basket.")
            return 0
        if args.basket_cmd == "remove":
            if not store.remove_from_basket(args.name):
                print(f"Not in basket: {args.name}")
                return 1
            print(f"OK: removed {args.name}.")
            return 0
        if args.basket_cmd == "clear":
            store.clear_basket()
            print("OK: basket cleared.")
            return 0
        if args.basket_cmd == "compare":
            report = build_basket_report(store.basket)
            print(report.summary_text())
            if args.out:
                print(f"\nReport written to {report.write_json(args.out)}")
            return 0

    if args.cmd == "checkout":
        return _run_checkout(args, store)

    raise RuntimeError("unreachable")


def _run_search(args) -> int:
    cfg = _load_config(args)
    store = _open_store(args, cfg)
    analyzer = Analyzer(
        GeminiClient(
            api_key=cfg.gemini_api_key,
            model=cfg.model,
            api_base=cfg.api_base_url,
            timeout_s=cfg.timeout_s,
        ),
        store,
    )

    image = ImagePayload.from_path(args.image) if args.image else None
    location = None
    if args.lat is not None and args.lng is not None:
        location = Location(lat=args.lat, lng=args.lng)

    try:
        result = asyncio.run(analyzer.analyze(args.query, image=image, location=location))
        if args.generic:
            if result.record.generic_alternative is None:
                print(f"No generic alternative listed for {result.record.medication_name}.")
            else:
                result = asyncio.run(analyzer.switch_to_generic(result.record, location=location))
    except (ValidationError, AnalysisFailedError) as exc:
        print(f"ERROR: {exc}")
        return 1

    record = result.record
    if args.json:
        print(json.dumps(record.to_dict(), indent=2, ensure_ascii=False))
    else:
        print(record_summary_text(record, result.links))
        print(f"\nMap: {map_view_url(record, result.links)}")

    if args.share:
        print(share_text(record))
    if args.save:
        now_saved = store.toggle_saved(record)
        print(f"{'Saved' if now_saved else 'Removed from saved'}: {record.medication_name}")
    if args.basket:
        if store.add_to_basket(record):
            print(f"Added to basket: {record.medication_name}")
    return 0


def _run_checkout(args, store: CollectionStore) -> int:
    if not store.basket:
        print("Your basket is empty")
        return 1

    common = compare_pharmacies(store.basket)
    if args.pharmacy not in {t.pharmacy_name for t in common}:
        print(f"WARN: {args.pharmacy} does not list every item; missing items count as {format_price(0)}.")

    checkout = Checkout(store)
    try:
        return _review_and_confirm(args, store, checkout)
    finally:
        checkout.close()


def _review_and_confirm(args, store: CollectionStore, checkout: Checkout) -> int:
    try:
        checkout.select_pharmacy(args.pharmacy)
        for name in args.exclude:
            checkout.toggle_item(name)
    except KeyError as exc:
        print(f"Not in basket: {exc.args[0]}")
        return 1
    except CheckoutStateError as exc:
        print(f"ERROR: {exc}")
        return 1

    print(f"Checkout at {args.pharmacy}")
    for r in store.basket:
        offer = r.offer_for(args.pharmacy)
        mark = "x" if r.medication_name in checkout.selected_items else " "
        price = offer.price if offer else "not listed"
        print(f"  [{mark}] {r.medication_name}  {price}")
    print(f"Total: {checkout.formatted_total()}")

    if not args.confirm:
        checkout.cancel()
        print("Dry run: pass --confirm to reserve.")
        return 0

    result = checkout.confirm()
    print(reservation_message(result))
    return 0 if result.confirmed else 1


if __name__ == "__main__":
    raise SystemExit(main())
