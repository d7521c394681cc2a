"""CLI for enriching a PDF deck with the deck_enrichment module."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

from src.shared.utils.env import load_env
from src.shared.utils.logging import setup_logging

from src.functions.deck_enrichment.core.factory import request_from_payload
from src.functions.deck_enrichment.core.service import DeckEnrichmentService


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Analyse and enrich every slide of a PDF deck.")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--pdf", type=Path, help="PDF document to ingest.")
    source.add_argument("--resume", action="store_true", help="Resume the project saved in the checkpoint.")
    parser.add_argument("--config", type=Path, help="Path to JSON payload matching the HTTP API.")
    parser.add_argument("--checkpoint", type=Path, help="Checkpoint file (default: DECK_CHECKPOINT_PATH).")
    parser.add_argument("--max-concurrent", type=int, help="Slides processed at the same time.")
    parser.add_argument("--poll-interval", type=float, help="Scheduler poll interval in seconds.")
    parser.add_argument("--generate-assets", action="store_true", help="Render asset prompts into images.")
    parser.add_argument("--api-key", help="Gemini API key.")
    parser.add_argument("--analysis-model", help="Model used for slide analysis.")
    parser.add_argument("--no-search", action="store_true", help="Disable Google Search grounding.")
    parser.add_argument("--no-supabase", action="store_true", help="Skip media upload and deck mirroring.")
    parser.add_argument("--deep-analyze", type=int, action="append", default=[], metavar="PAGE",
                        help="Run deep analysis on a page index (repeatable).")
    parser.add_argument("--edit", nargs=6, action="append", default=[],
                        metavar=("PAGE", "X", "Y", "WIDTH", "HEIGHT", "INSTRUCTION"),
                        help="Apply an area edit to a page (repeatable).")
    parser.add_argument("--video", nargs=3, action="append", default=[],
                        metavar=("PAGE", "PLACEMENT", "PROMPT"),
                        help="Generate a background or intro video for a page (repeatable).")
    parser.add_argument("--retry", type=int, action="append", default=[], metavar="PAGE",
                        help="Send a failed page back through the pipeline (repeatable).")
    parser.add_argument("--include-images", action="store_true", help="Include source page images in output.")
    parser.add_argument("--output", type=Path, help="Optional path to write JSON response.")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"))
    return parser.parse_args()


def build_actions(args: argparse.Namespace) -> List[Dict[str, Any]]:
    actions: List[Dict[str, Any]] = []
    for page in args.retry:
        actions.append({"type": "retry", "page_index": page})
    for page in args.deep_analyze:
        actions.append({"type": "deep_analyze", "page_index": page})
    for page, x, y, width, height, instruction in args.edit:
        actions.append(
            {
                "type": "edit_area",
                "page_index": int(page),
                "rect": {"x": float(x), "y": float(y), "width": float(width), "height": float(height)},
                "instruction": instruction,
            }
        )
    for page, placement, prompt in args.video:
        actions.append(
            {"type": "generate_video", "page_index": int(page), "placement": placement, "prompt": prompt}
        )
    return actions


def load_payload(args: argparse.Namespace) -> Dict[str, Any]:
    payload: Dict[str, Any] = {}
    if args.config:
        with args.config.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)

    if args.pdf:
        payload["document_path"] = str(args.pdf)
    if args.resume:
        payload["resume"] = True
    if args.checkpoint:
        payload.setdefault("storage", {})["checkpoint_path"] = str(args.checkpoint)

    pipeline = payload.setdefault("pipeline", {})
    if args.max_concurrent is not None:
        pipeline["max_concurrent"] = args.max_concurrent
    if args.poll_interval is not None:
        pipeline["poll_interval"] = args.poll_interval
    if args.generate_assets:
        pipeline["generate_assets"] = True

    llm = payload.setdefault("llm", {})
    if args.api_key:
        llm["api_key"] = args.api_key
    if args.analysis_model:
        llm["analysis_model"] = args.analysis_model
    if args.no_search:
        llm["enable_search_grounding"] = False

    if args.no_supabase:
        payload["supabase"] = {"enabled": False}
    else:
        logging.info("Supabase credentials are read from SUPABASE_URL/SUPABASE_KEY when set.")

    actions = build_actions(args)
    if actions:
        payload["actions"] = list(payload.get("actions", [])) + actions
    if args.include_images:
        payload["include_source_images"] = True
    return payload


async def run_request(payload: Dict[str, Any]) -> Dict[str, Any]:
    request_model = request_from_payload(payload)
    service = DeckEnrichmentService(request_model)
    await service.process()
    return service.response(include_source_images=request_model.include_source_images)


def main() -> None:
    args = parse_args()
    load_env()
    setup_logging(level=args.log_level)

    try:
        payload = load_payload(args)
        response = asyncio.run(run_request(payload))
    except Exception as exc:  # noqa: BLE001
        logging.error("Deck enrichment failed: %s", exc, exc_info=True)
        raise SystemExit(1) from exc

    output_text = json.dumps(response, indent=2, ensure_ascii=False)
    if args.output:
        args.output.write_text(output_text + "\n", encoding="utf-8")
        logging.info("Wrote response to %s", args.output)
    else:
        print(output_text)


if __name__ == "__main__":
    main()
