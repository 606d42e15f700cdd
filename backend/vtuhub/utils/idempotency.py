from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from flask import request
from sqlalchemy.exc import IntegrityError

from vtuhub.extensions import db
from vtuhub.models import IdempotencyKey

HEADERS = ("Idempotency-Key", "X-Idempotency-Key")


@dataclass
class Claim:
    """Outcome of presenting an Idempotency-Key.

    ``replay`` holds a stored ``(body, status)`` when the reply is already
    known. Otherwise ``row`` is the fresh key the caller must record or
    release once the request finishes.
    """

    row: IdempotencyKey | None = None
    replay: tuple[dict, int] | None = None


def _fingerprint(payload: Any) -> str:
    return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode("utf-8")).hexdigest()


def header_key() -> str | None:
    for name in HEADERS:
        value = (request.headers.get(name) or "").strip()
        if value:
            return value[:128]
    return None


def _in_flight() -> tuple[dict, int]:
    return {"ok": False, "message": "A request with this Idempotency-Key is still in progress"}, 409


def claim(user_id: int, route: str, payload: Any) -> Claim | None:
    key = header_key()
    if key is None:
        return None

    fingerprint = _fingerprint(payload)
    existing = IdempotencyKey.query.filter_by(key=key).first()
    if existing is not None:
        if existing.user_id != user_id or existing.route != route or existing.request_hash != fingerprint:
            return Claim(replay=({"ok": False, "message": "Idempotency-Key was already used for a different request"}, 409))
        if existing.response_json is None:
            return Claim(replay=_in_flight())
        return Claim(replay=(json.loads(existing.response_json), int(existing.status_code)))

    row = IdempotencyKey(key=key, user_id=user_id, route=route, request_hash=fingerprint)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return Claim(replay=_in_flight())
    return Claim(row=row)


def record(c: Claim, body: dict, status: int) -> None:
    c.row.response_json = json.dumps(body, default=str)
    c.row.status_code = int(status)
    db.session.commit()


def release(c: Claim) -> None:
    db.session.delete(c.row)
    db.session.commit()
