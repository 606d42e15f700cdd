from __future__ import annotations

from typing import Any

import requests
from flask import current_app

from vtuhub.errors import ProviderTransportError
from vtuhub.providers.interpreters import INTERPRETERS, collect_validation_errors, extract_message
from vtuhub.providers.registry import ProviderRoute
from vtuhub.providers.result import Outcome, ProviderResult

# Upstream gateway timeouts: the provider may still have processed the request.
_AMBIGUOUS_HTTP = (502, 504)

_RAW_LIMIT = 4000


def _send(route: ProviderRoute, payload: dict) -> requests.Response:
    headers = {"Content-Type": "application/json", "Accept": "application/json"}
    headers.update(route.auth_header())
    kwargs = {"headers": headers, "timeout": route.timeout}
    if route.method == "GET":
        kwargs["params"] = payload
    else:
        kwargs["json"] = payload
    try:
        return requests.request(route.method, route.url, **kwargs)
    except requests.exceptions.ConnectTimeout as e:
        raise ProviderTransportError(f"connect timeout: {e}")
    except requests.exceptions.Timeout as e:
        # Request was sent; the provider may have acted on it.
        raise ProviderTransportError(f"read timeout: {e}", ambiguous=True)
    except requests.exceptions.RequestException as e:
        raise ProviderTransportError(str(e))


def _parse(resp: requests.Response) -> Any:
    text = resp.text or ""
    if not text.strip():
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def submit(route: ProviderRoute, payload: dict, *, reference: str) -> ProviderResult:
    """POST a purchase and classify the reply. Never raises for provider trouble."""
    log = current_app.logger
    payload = dict(payload)
    payload.setdefault("ref", reference)
    try:
        resp = _send(route, payload)
    except ProviderTransportError as e:
        outcome = Outcome.PROCESSING if e.ambiguous else Outcome.FAILED
        log.warning("vtu %s ref=%s transport error (%s): %s", route.route, reference, outcome.value, e)
        return ProviderResult(
            outcome=outcome,
            message="Transaction is processing" if e.ambiguous else "Could not reach service provider",
            provider=route.provider,
            reason="ambiguous" if e.ambiguous else "transport",
        )

    code = resp.status_code
    raw = (resp.text or "")[:_RAW_LIMIT]
    body = _parse(resp)
    result = ProviderResult(outcome=Outcome.FAILED, provider=route.provider, http_code=code, raw_body=raw, data=body)

    if code in _AMBIGUOUS_HTTP:
        result.outcome = Outcome.PROCESSING
        result.reason = "gateway_timeout"
        result.message = "Transaction is processing"
    elif code >= 500:
        result.reason = "provider_error"
        result.message = extract_message(body) or "Service provider error"
    elif code >= 400:
        errors = collect_validation_errors(body)
        result.validation_errors = errors
        result.reason = "validation" if errors else "rejected"
        result.message = "; ".join(errors) or extract_message(body) or f"Request rejected (HTTP {code})"
    elif not 200 <= code < 300:
        result.reason = "unexpected_status"
        result.message = f"Unexpected provider response (HTTP {code})"
    elif not isinstance(body, dict):
        result.reason = "unparseable"
        result.message = "Invalid response from service provider"
    else:
        verdict = INTERPRETERS[route.interpreter](body)
        result.outcome = verdict.outcome
        result.message = verdict.message
        result.validation_errors = verdict.validation_errors
        result.extras = verdict.extras
        if verdict.outcome is Outcome.FAILED and verdict.validation_errors:
            result.reason = "validation"

    log.info(
        "vtu %s ref=%s provider=%s http=%s outcome=%s",
        route.route, reference, route.provider, code, result.outcome.value,
    )
    if result.outcome is not Outcome.SUCCESS:
        log.info("vtu %s ref=%s body=%s", route.route, reference, raw[:500])
    return result


def _customer_name(body: dict) -> str:
    sources = [body]
    for key in ("data", "content", "response"):
        if isinstance(body.get(key), dict):
            sources.append(body[key])
    for src in sources:
        for key in ("name", "Customer_Name", "customer_name", "customerName"):
            value = src.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return ""


def lookup_customer(route: ProviderRoute, payload: dict) -> ProviderResult:
    """IUC or meter lookup. SUCCESS only when the provider names the customer."""
    try:
        resp = _send(route, payload)
    except ProviderTransportError as e:
        current_app.logger.warning("vtu %s lookup transport error: %s", route.route, e)
        return ProviderResult(outcome=Outcome.FAILED, message="Could not reach service provider", provider=route.provider, reason="transport")

    body = _parse(resp)
    result = ProviderResult(
        outcome=Outcome.FAILED,
        provider=route.provider,
        http_code=resp.status_code,
        raw_body=(resp.text or "")[:_RAW_LIMIT],
        data=body,
    )
    if not isinstance(body, dict):
        result.reason = "unparseable"
        result.message = "Invalid response from service provider"
        return result

    name = _customer_name(body)
    if 200 <= resp.status_code < 300 and name and body.get("invalid") is not True:
        result.outcome = Outcome.SUCCESS
        result.extras["customer_name"] = name
        result.message = extract_message(body)
        return result

    result.validation_errors = collect_validation_errors(body)
    result.reason = "validation" if 400 <= resp.status_code < 500 or result.validation_errors else "rejected"
    result.message = extract_message(body) or "; ".join(result.validation_errors) or "Verification failed"
    return result
