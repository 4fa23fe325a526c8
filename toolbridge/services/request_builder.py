"""Build outbound HTTP requests from tool templates and call arguments."""

import base64
import json
import logging
from typing import Any, Dict, List, Mapping, Optional

from toolbridge.infra.secrets import get_secret
from toolbridge.models.result import Outcome
from toolbridge.models.template import Credential, ToolTemplate
from toolbridge.models.tool import PreparedRequest
from toolbridge.services.schema_deriver import (
    PLACEHOLDER_PATTERN,
    contains_placeholder,
    decode_body,
    first_token,
)

logger = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH")
DEFAULT_API_KEY_HEADER = "X-API-Key"


def stringify_argument(value: Any) -> str:
    """Text form of an argument inside a template string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def substitute_text(text: str, args: Mapping[str, Any]) -> str:
    """Replace every ``{{token}}`` that has an argument; unknown tokens stay as written."""
    def replace(match):
        name = match.group(1)
        if args.get(name) is None:
            return match.group(0)
        return stringify_argument(args[name])

    return PLACEHOLDER_PATTERN.sub(replace, text)


def substitute(node: Any, args: Mapping[str, Any]) -> Any:
    """Copy of ``node`` with placeholders in every string leaf substituted."""
    if isinstance(node, str):
        return substitute_text(node, args)
    if isinstance(node, dict):
        return {key: substitute(value, args) for key, value in node.items()}
    if isinstance(node, list):
        return [substitute(value, args) for value in node]
    return node


def build_body(template: ToolTemplate, args: Mapping[str, Any]) -> Any:
    body, is_raw_text = decode_body(template.body)

    if body is None:
        return dict(args)
    if is_raw_text:
        return substitute_text(body, args)

    rendered = substitute(body, args)
    if isinstance(rendered, dict):
        # Static top-level fields can be overridden by an argument of the same name
        for key, value in body.items():
            is_placeholder = contains_placeholder(value) or (isinstance(value, str) and "{{" in value)
            if not is_placeholder and key in args:
                rendered[key] = args[key]
    return rendered


def _query_value(value: Any) -> Any:
    if isinstance(value, dict):
        return json.dumps(value, ensure_ascii=False)
    return value


def build_query_params(template: ToolTemplate, args: Mapping[str, Any]) -> Dict[str, Any]:
    params: Dict[str, Any] = {}

    if template.method == "GET":
        for param in template.query_params:
            if not param.key:
                continue
            if isinstance(param.value, str) and first_token(param.value):
                continue
            params[param.key] = param.value
        for name, value in args.items():
            if value is not None:
                params[name] = _query_value(value)
        return params

    for param in template.query_params:
        if not param.key:
            continue
        if not isinstance(param.value, str):
            params[param.key] = param.value
            continue
        tokens = PLACEHOLDER_PATTERN.findall(param.value)
        if any(args.get(token) is None for token in tokens):
            continue
        params[param.key] = substitute_text(param.value, args)
    return params


def build_headers(template: ToolTemplate) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    for header in template.headers:
        key = (header.key or "").strip()
        if not key or header.value is None:
            continue
        value = header.value if isinstance(header.value, str) else stringify_argument(header.value)
        if not value.strip():
            continue
        merge_header(headers, key, value)
    return headers


def merge_header(headers: Dict[str, str], key: str, value: str) -> None:
    """Set a header, replacing any existing entry that differs only in case."""
    for existing in [k for k in headers if k.lower() == key.lower()]:
        del headers[existing]
    headers[key] = value


def authentication_headers(credential: Optional[Credential], args: Mapping[str, Any]) -> Outcome[Dict[str, str]]:
    """
    Headers for a credential.

    A credential that cannot be applied (missing secret, malformed custom
    headers, unknown type) degrades to no headers with a warning; the call
    still goes out.
    """
    if credential is None or credential.auth_type == "none":
        return Outcome.ok({})

    auth_type = credential.auth_type
    secret = get_secret(credential.secret)

    if auth_type == "bearer":
        token = args.get("token") or secret
        if not token:
            return Outcome.degrade({}, f"bearer credential {credential.id} has no token")
        return Outcome.ok({"Authorization": f"Bearer {token}"})

    if auth_type == "api_key":
        if not secret:
            return Outcome.degrade({}, f"api_key credential {credential.id} has no value")
        header_name, sep, header_value = secret.partition(":")
        if not sep:
            return Outcome.ok({DEFAULT_API_KEY_HEADER: secret.strip()})
        return Outcome.ok({header_name.strip() or DEFAULT_API_KEY_HEADER: header_value.strip()})

    if auth_type == "basic":
        password = get_secret(credential.password)
        if not credential.username or not password:
            return Outcome.degrade({}, f"basic credential {credential.id} is missing username or password")
        token = base64.b64encode(f"{credential.username}:{password}".encode("utf-8")).decode("ascii")
        return Outcome.ok({"Authorization": f"Basic {token}"})

    if auth_type == "custom":
        if not secret:
            return Outcome.degrade({}, f"custom credential {credential.id} has no headers")
        try:
            custom = json.loads(secret)
        except ValueError as e:
            return Outcome.degrade({}, f"custom credential {credential.id} headers are not valid JSON: {e}")
        if not isinstance(custom, dict):
            return Outcome.degrade({}, f"custom credential {credential.id} headers must be a JSON object")
        return Outcome.ok({str(k): stringify_argument(v) for k, v in custom.items()})

    return Outcome.degrade({}, f"unsupported auth type '{auth_type}' on credential {credential.id}")


def build_request(
    template: ToolTemplate,
    credential: Optional[Credential],
    args: Optional[Mapping[str, Any]] = None,
) -> PreparedRequest:
    """
    Turn a template plus arguments into a request descriptor.

    Deterministic for identical inputs and never mutates the template.
    Missing arguments leave their placeholders in place.
    """
    args = dict(args or {})
    method = template.method
    headers = build_headers(template)
    warnings: List[str] = []

    auth = authentication_headers(credential, args)
    for key, value in auth.value.items():
        merge_header(headers, key, value)
    for reason in auth.degraded:
        logger.warning(
            "Authentication not applied",
            extra={"template_id": template.id, "credential_id": credential.id if credential else None, "reason": reason},
        )
        warnings.append(reason)

    body = build_body(template, args) if method in BODY_METHODS else None
    params = build_query_params(template, args)

    return PreparedRequest(
        method=method,
        url=template.url.strip(),
        headers=headers,
        body=body,
        params=params or None,
        timeout=template.timeout_seconds,
        warnings=warnings,
    )
