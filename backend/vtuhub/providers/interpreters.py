"""Turn a provider's parsed JSON body into an Outcome.

Providers disagree on where they put the verdict, so each interpreter walks a
fixed precedence and anything it cannot place is PROCESSING, never SUCCESS.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

from vtuhub.providers.result import Outcome

SUCCESS_WORDS = {"success", "successful", "ok", "completed", "true", "1", "delivered"}
FAILURE_WORDS = {
    "failed",
    "fail",
    "error",
    "failed_transaction",
    "false",
    "0",
    "reversed",
    "refunded",
    "cancelled",
    "rejected",
    "invalid",
}
PENDING_WORDS = {"pending", "processing", "initiated", "queued", "in progress", "in_progress"}

_SUCCESS_MSG_RE = re.compile(r"(?<!not )\b(success|successful|successfully|completed)\b", re.IGNORECASE)
_TOKEN_RE = re.compile(r"token\s*[:\-]?\s*(.+)", re.IGNORECASE)

# Keys that carry payload, not field-level errors, even when they hold lists.
_NON_ERROR_LIST_KEYS = {"pins", "data", "content", "response", "plans", "cards", "results"}


@dataclass
class Interpretation:
    outcome: Outcome
    message: str = ""
    validation_errors: List[str] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)


def _classify(value) -> Outcome | None:
    if isinstance(value, bool) or value is None:
        return None
    word = str(value).strip().lower()
    if word in SUCCESS_WORDS:
        return Outcome.SUCCESS
    if word in FAILURE_WORDS:
        return Outcome.FAILED
    if word in PENDING_WORDS:
        return Outcome.PROCESSING
    return None


def _nested(body: dict, key: str) -> dict:
    v = body.get(key)
    return v if isinstance(v, dict) else {}


def extract_message(body) -> str:
    if not isinstance(body, dict):
        return ""
    data = _nested(body, "data")
    for candidate in (
        body.get("message"),
        body.get("msg"),
        body.get("api_response"),
        body.get("detail"),
        data.get("msg"),
        data.get("message"),
        body.get("error") if isinstance(body.get("error"), str) else None,
    ):
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()
    return ""


def collect_validation_errors(body) -> List[str]:
    """Field-level complaints in any of the shapes providers use."""
    if not isinstance(body, dict):
        return []
    errors = []

    def _add(prefix, value):
        if isinstance(value, str) and value.strip():
            errors.append(f"{prefix}: {value.strip()}" if prefix else value.strip())
        elif isinstance(value, list):
            for item in value:
                _add(prefix, item)
        elif isinstance(value, dict):
            for k, v in value.items():
                _add(k, v)

    for key in ("errors", "error", "detail"):
        if key in body and body[key]:
            _add("", body[key])

    for key, value in body.items():
        if key in _NON_ERROR_LIST_KEYS or key in ("errors", "error", "detail"):
            continue
        if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
            _add(key, value)
    return errors


def interpret_status(body: dict) -> Interpretation:
    message = extract_message(body)

    for key in ("current_status", "status", "Status"):
        verdict = _classify(body.get(key))
        if verdict is not None:
            return Interpretation(verdict, message)

    if isinstance(body.get("status"), bool):
        return Interpretation(Outcome.SUCCESS if body["status"] else Outcome.FAILED, message)

    data = _nested(body, "data")
    for key in ("status", "Status", "current_status"):
        value = data.get(key)
        if isinstance(value, bool):
            return Interpretation(Outcome.SUCCESS if value else Outcome.FAILED, message)
        verdict = _classify(value)
        if verdict is not None:
            return Interpretation(verdict, message)

    for text in (body.get("api_response"), body.get("message"), body.get("msg"), data.get("msg")):
        if isinstance(text, str) and _SUCCESS_MSG_RE.search(text):
            return Interpretation(Outcome.SUCCESS, message)

    return Interpretation(Outcome.PROCESSING, message or "Transaction is processing")


def clean_token(raw) -> str:
    text = str(raw or "").strip()
    m = _TOKEN_RE.search(text)
    if m:
        text = m.group(1).strip()
    return text


def extract_token(body: dict) -> str:
    response = _nested(body, "response")
    sources = (body, _nested(body, "data"), response, _nested(response, "content"), _nested(body, "content"))
    for src in sources:
        for key in ("Token", "token", "purchased_code", "mainToken"):
            value = src.get(key)
            if value:
                return clean_token(value)
    return ""


def _extract_units(body: dict) -> str:
    for src in (body, _nested(body, "data"), _nested(body, "response")):
        for key in ("units", "Units", "unit"):
            if src.get(key):
                return str(src[key])
    return ""


def interpret_electricity(body: dict) -> Interpretation:
    errors = collect_validation_errors(body)
    if body.get("success") is False or errors:
        message = "; ".join(errors) or extract_message(body) or "Electricity purchase failed"
        return Interpretation(Outcome.FAILED, message, validation_errors=errors)

    result = interpret_status(body)
    if result.outcome is Outcome.PROCESSING and body.get("success") is True:
        result.outcome = Outcome.SUCCESS

    token = extract_token(body)
    if token:
        result.extras["token"] = token
    units = _extract_units(body)
    if units:
        result.extras["units"] = units
    return result


def normalize_pins(raw) -> List[Dict[str, str]]:
    if isinstance(raw, str):
        raw = [p for p in re.split(r"[,\n]", raw) if p.strip()]
    pins = []
    for item in raw or []:
        if isinstance(item, dict):
            pin = item.get("pin") or item.get("Pin") or item.get("token") or ""
            serial = item.get("serial") or item.get("Serial") or item.get("serial_number") or ""
        else:
            pin, serial = item, ""
        pin = str(pin).strip()
        if pin:
            pins.append({"pin": pin, "serial": str(serial).strip()})
    return pins


def interpret_pins(body: dict) -> Interpretation:
    message = extract_message(body)
    if body.get("error"):
        return Interpretation(Outcome.FAILED, message or str(body["error"]), validation_errors=collect_validation_errors(body))
    status = str(body.get("status") or "").strip().lower()
    if status in ("error", "fail", "failed"):
        return Interpretation(Outcome.FAILED, message or "PIN purchase failed")

    pins = normalize_pins(body.get("pins") or _nested(body, "data").get("pins"))
    if not pins:
        return Interpretation(Outcome.FAILED, message or "No pins returned")
    return Interpretation(Outcome.SUCCESS, message or "PINs generated", extras={"pins": pins})


INTERPRETERS = {
    "status": interpret_status,
    "electricity": interpret_electricity,
    "pins": interpret_pins,
}
