from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict, replace
from typing import List, Optional

from .blocks import MempoolClient, load_block_hash_from_file
from .config import Settings
from .interfaces import BlockDataProvider, ReceiptSource
from .notes import announcement_template, commitment_template
from .receipts import FileReceiptSource
from .schedule import compute_round, estimate_time_to_block, round_for_draw_block
from .tickets import (
    TicketEntry,
    build_ticket_entries,
    create_commitment,
    ticket_distribution,
)
from .verify import build_audit, check_commitment, load_commitment, verify_audit
from .winner import calculate_prize_amount, select_winner


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _settings(args: argparse.Namespace) -> Settings:
    settings = Settings.from_env(mempool_url_override=args.mempool_url)
    if getattr(args, "min_ticket", None) is not None:
        settings = replace(
            settings, lottery=replace(settings.lottery, min_ticket_purchase=args.min_ticket)
        )
    return settings


def _load_entries(
    source: ReceiptSource, note_id: Optional[str], min_ticket_purchase: int
) -> List[TicketEntry]:
    log = logging.getLogger("tickets")
    events = source.fetch_receipts(note_id)
    log.info("Receipts loaded   : %d", len(events))
    entries = build_ticket_entries(
        events, min_ticket_purchase=min_ticket_purchase, note_id=note_id
    )
    log.info("Ticket entries    : %d", len(entries))
    return entries


def _draw_block_hash(provider: BlockDataProvider, height: int) -> Optional[str]:
    tip = provider.get_tip_height()
    if tip < height:
        logging.getLogger("draw").info("Tip is %d, draw block %d not mined yet", tip, height)
        return None
    return provider.get_block_hash(height)


def cmd_status(args: argparse.Namespace) -> int:
    settings = _settings(args)

    height = args.height
    if height is None:
        with MempoolClient(settings.mempool_url, timeout_s=args.timeout) as mempool:
            height = mempool.get_tip_height()

    if args.draw_block is not None:
        info = round_for_draw_block(
            args.draw_block, height, settings.lottery, has_note=bool(args.note_id)
        )
    else:
        info = compute_round(height, settings.lottery, has_note=bool(args.note_id))

    print("========================================")
    print("⚡ LIGHTNING LOTTERY ROUND")
    print("========================================")
    print(f"Round          : {info.id}")
    print(f"Current block  : {height}")
    print(f"Status         : {info.status.value}")
    print(f"Round start    : {info.start_block}")
    print(
        f"Sales close    : {info.sales_close_block} "
        f"({info.blocks_until_sales_close} blocks, "
        f"{estimate_time_to_block(info.blocks_until_sales_close).formatted})"
    )
    print(
        f"Draw block     : {info.draw_block} "
        f"({info.blocks_until_draw} blocks, "
        f"{estimate_time_to_block(info.blocks_until_draw).formatted})"
    )
    print(f"Payout block   : {info.payout_block} ({info.blocks_until_payout} blocks)")

    if args.announce:
        print("----------------------------------------")
        print(json.dumps(announcement_template(info), indent=2))
    return 0


def cmd_tickets(args: argparse.Namespace) -> int:
    settings = _settings(args)
    entries = _load_entries(
        FileReceiptSource(args.receipts), args.note_id, settings.lottery.min_ticket_purchase
    )
    dist = ticket_distribution(entries)
    prize = calculate_prize_amount(dist.total_sats, settings.lottery.platform_fee_percent)

    print(f"Total tickets : {dist.total_tickets}")
    print(f"Unique buyers : {dist.unique_buyers}")
    print(f"Prize (net)   : {prize.net_prize} sats (fee {prize.platform_fee})")
    print("----------------------------------------")
    for e in entries:
        print(f"#{e.ticket_start}-#{e.ticket_end}  {e.buyer_key}  {e.payment_hash}")
    print("----------------------------------------")
    for s in dist.buyer_stats:
        print(f"{s.buyer_key}  {s.tickets} tickets  {s.percentage:.2f}%")
    return 0


def cmd_commit(args: argparse.Namespace) -> int:
    settings = _settings(args)
    entries = _load_entries(
        FileReceiptSource(args.receipts), args.note_id, settings.lottery.min_ticket_purchase
    )
    if not entries:
        raise SystemExit("No tickets to commit.")

    commitment = create_commitment(entries, args.draw_block)
    payload = {"commitment": asdict(commitment), "event": commitment_template(commitment)}

    with open(args.out, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    print(f"Draw block     : {commitment.draw_block}")
    print(f"Total tickets  : {commitment.total_tickets}")
    print(f"Ticket hash    : {commitment.ticket_hash}")
    print(f"🧾 Wrote commitment: {args.out}")
    return 0


def cmd_draw(args: argparse.Namespace) -> int:
    settings = _settings(args)
    log = logging.getLogger("draw")

    # Seed source
    if args.block_hash_file:
        block_hash = load_block_hash_from_file(args.block_hash_file, height_hint=args.draw_block)
        block_source = f"file:{args.block_hash_file}"
    else:
        with MempoolClient(settings.mempool_url, timeout_s=args.timeout) as mempool:
            block_hash = _draw_block_hash(mempool, args.draw_block)
        block_source = f"mempool:{settings.mempool_url}"

    if block_hash is None:
        raise SystemExit(f"Block {args.draw_block} not found yet; try again later.")

    log.info("Block hash        : %s", block_hash)
    log.info("Block source      : %s", block_source)

    entries = _load_entries(
        FileReceiptSource(args.receipts), args.note_id, settings.lottery.min_ticket_purchase
    )

    if args.commitment:
        try:
            check_commitment(entries, load_commitment(args.commitment), args.draw_block)
        except RuntimeError as e:
            raise SystemExit(f"Refusing to draw: {e}") from e
        log.info("Receipts match commitment %s", args.commitment)

    result = select_winner(entries, block_hash)
    if result is None:
        raise SystemExit("No tickets were sold; there is no winner this round.")

    audit = build_audit(
        entries, result, settings.lottery, args.draw_block, block_source=block_source
    )
    with open(args.out, "w", encoding="utf-8") as f:
        json.dump(audit, f, indent=2)

    prize = audit["metadata"]["prize"]
    print("========================================")
    print("🔒 VERIFIABLE LIGHTNING LOTTERY DRAW")
    print("========================================")
    print(f"Draw block     : {args.draw_block}")
    print(f"Block hash     : {block_hash}")
    print(f"Ticket hash    : {audit['metadata']['ticket_hash']}")
    print("----------------------------------------")
    print("🏆 WINNER")
    print(f"Buyer          : {result.winner.buyer_key}")
    print(f"Winning ticket : {result.ticket_number} of {result.verification.total_tickets}")
    print(f"Calculation    : {result.verification.winning_ticket_calc}")
    print(f"Prize          : {prize['net_sats']} sats")
    print("----------------------------------------")
    print(f"🧾 Wrote audit: {args.out}")
    return 0


def cmd_verify(args: argparse.Namespace) -> int:
    published = load_commitment(args.commitment) if args.commitment else None
    result = verify_audit(args.audit, published=published)
    print("✅ AUDIT VERIFIED")
    print(f"Winner        : {result['winner']}")
    print(f"Winning Ticket: {result['winning_ticket']}")
    print(f"Total Tickets : {result['total_tickets']}")
    print(f"Ticket Hash   : {result['ticket_hash']}")
    if result["commitment_checked"]:
        print(f"Commitment    : matches {args.commitment}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="lightning-lottery",
        description="Provably fair Lightning lottery drawn from a Bitcoin block hash.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument(
        "--mempool-url", default=None, help="Override mempool API URL (else use env)."
    )
    p.add_argument("--timeout", type=float, default=30.0, help="HTTP timeout seconds.")

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("status", help="Show the current round and its milestones.")
    s.add_argument("--height", type=int, default=None, help="Use this block height.")
    s.add_argument("--note-id", default=None, help="Tracked announcement note id.")
    s.add_argument(
        "--draw-block", type=int, default=None, help="Follow an already announced round."
    )
    s.add_argument(
        "--announce", action="store_true", help="Print an announcement event template."
    )
    s.set_defaults(func=cmd_status)

    def add_receipt_args(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--receipts", required=True, help="Zap receipts JSON file.")
        sp.add_argument("--note-id", default=None, help="Only count zaps to this note.")
        sp.add_argument(
            "--min-ticket", type=int, default=None, help="Override minimum purchase."
        )

    t = sub.add_parser("tickets", help="Show ticket assignments and distribution.")
    add_receipt_args(t)
    t.set_defaults(func=cmd_tickets)

    c = sub.add_parser("commit", help="Write the pre-draw ticket commitment.")
    add_receipt_args(c)
    c.add_argument("--draw-block", required=True, type=int, help="Draw block height.")
    c.add_argument("--out", default="commitment.json", help="Commitment output path.")
    c.set_defaults(func=cmd_commit)

    d = sub.add_parser("draw", help="Run the draw and write an audit JSON.")
    add_receipt_args(d)
    d.add_argument("--draw-block", required=True, type=int, help="Draw block height.")
    d.add_argument(
        "--block-hash-file",
        default=None,
        help=(
            "Path to a file holding the draw block hash. "
            "Can be raw string or JSON containing hash."
        ),
    )
    d.add_argument(
        "--commitment",
        default=None,
        help="Refuse to draw unless the receipts match this commitment.",
    )
    d.add_argument("--out", default="audit.json", help="Audit output JSON path.")
    d.set_defaults(func=cmd_draw)

    v = sub.add_parser(
        "verify", help="Verify an existing audit.json deterministically."
    )
    v.add_argument("--audit", required=True, help="Path to audit.json.")
    v.add_argument(
        "--commitment",
        default=None,
        help="Also check the audit against the pre-draw commitment file or event.",
    )
    v.set_defaults(func=cmd_verify)

    return p


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    raise SystemExit(args.func(args))
