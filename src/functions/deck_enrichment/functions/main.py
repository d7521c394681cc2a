"""Cloud Function entry point for the deck enrichment service."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

import flask
import functions_framework

# Ensure project root is on sys.path before importing project modules
project_root = Path(__file__).parent.parent.parent.parent.parent.absolute()
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from src.shared.utils.env import load_env
from src.shared.utils.logging import setup_logging

from src.functions.deck_enrichment.core.errors import (
    InvalidTransitionError,
    RenderError,
    UnitBusyError,
    UnitNotFoundError,
)
from src.functions.deck_enrichment.core.factory import request_from_payload
from src.functions.deck_enrichment.core.service import DeckEnrichmentService

load_env()
setup_logging(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


def deck_enrichment_handler(request: flask.Request) -> flask.Response:
    """HTTP handler that ingests a PDF deck and enriches every slide."""

    if request.method == "OPTIONS":
        return _cors_response({}, status=204)

    if request.method != "POST":
        logger.warning("Unsupported HTTP method: %s", request.method)
        return _error_response("Method not allowed. Use POST.", status=405)

    try:
        payload = request.get_json(silent=True) or {}
        request_model = request_from_payload(payload)
        logger.info(
            "Incoming deck enrichment request (resume=%s, actions=%d, max_concurrent=%d)",
            request_model.resume,
            len(request_model.actions),
            request_model.pipeline_config.max_concurrent,
        )

        service = DeckEnrichmentService(request_model)
        asyncio.run(service.process())
        return _cors_response(
            service.response(include_source_images=request_model.include_source_images)
        )
    except UnitNotFoundError as exc:
        logger.warning("Unknown slide: %s", exc)
        return _error_response(str(exc), status=404)
    except (UnitBusyError, InvalidTransitionError) as exc:
        logger.warning("Action rejected: %s", exc)
        return _error_response(str(exc), status=409)
    except RenderError as exc:
        logger.warning("Document could not be rendered: %s", exc)
        return _error_response(str(exc), status=422)
    except ValueError as exc:
        logger.warning("Invalid request: %s", exc)
        return _error_response(str(exc), status=400)
    except Exception:  # noqa: BLE001
        logger.error("Unexpected failure", exc_info=True)
        return _error_response("Internal server error", status=500)


def health_check_handler(request: flask.Request) -> flask.Response:
    """Health check endpoint."""

    return _cors_response({"status": "healthy", "service": "deck_enrichment"})


_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST,OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _cors_response(body: Dict[str, Any], status: int = 200) -> flask.Response:
    response = flask.make_response(json.dumps(body, ensure_ascii=False), status)
    response.headers["Content-Type"] = "application/json"
    response.headers.update(_CORS_HEADERS)
    return response


def _error_response(message: str, status: int) -> flask.Response:
    return _cors_response({"status": "error", "message": message}, status=status)


@functions_framework.http
def enrich_deck(request: flask.Request):
    return deck_enrichment_handler(request)


@functions_framework.http
def health_check(request: flask.Request):
    return health_check_handler(request)
