# src/execution/validation.py - v1
"""Response contract checks for header contexts and JSON documents."""

from __future__ import annotations

import json
from typing import Any

from dialectica.core.errors import ResponseContractError


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ``` fence (with or without a language tag)."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [ln for ln in lines if not ln.strip().startswith("```")]
        text = "\n".join(lines).strip()
    return text


def parse_json_object(text: str, what: str = "response") -> dict[str, Any]:
    """Parse a JSON object, tolerating code fences.

    Raises:
        ResponseContractError: If the text is not a JSON object.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise ResponseContractError(
            f"{what} is not valid JSON: {e.msg} at line {e.lineno}", what=what
        ) from e
    if not isinstance(data, dict):
        raise ResponseContractError(
            f"{what} must be a JSON object, got {type(data).__name__}", what=what
        )
    return data


def validate_header_context(text: str, declared_keys: tuple[str, ...]) -> dict[str, Any]:
    """Check a header context against its declared document keys.

    Returns:
        The parsed header context.

    Raises:
        ResponseContractError: Malformed JSON, a missing or malformed
            ``context_for_documents`` list, or keys that differ from the
            declared set.
    """
    data = parse_json_object(text, "header context")
    entries = data.get("context_for_documents")
    if not isinstance(entries, list):
        raise ResponseContractError(
            "header context has no context_for_documents list",
            declared=list(declared_keys),
        )
    keys: list[str] = []
    for entry in entries:
        if not isinstance(entry, dict) or not isinstance(entry.get("document_key"), str):
            raise ResponseContractError(
                "every context_for_documents entry needs a document_key string",
                entry=entry,
            )
        keys.append(entry["document_key"])

    duplicates = sorted({k for k in keys if keys.count(k) > 1})
    missing = sorted(set(declared_keys) - set(keys))
    unexpected = sorted(set(keys) - set(declared_keys))
    if duplicates or missing or unexpected:
        raise ResponseContractError(
            "header context document keys do not match the declared contract",
            missing=missing,
            unexpected=unexpected,
            duplicates=duplicates,
        )
    return data


def header_excerpt(header: dict[str, Any], document_key: str) -> dict[str, Any]:
    """Header context reduced to the shared fields plus one document's entry."""
    excerpt = {k: v for k, v in header.items() if k != "context_for_documents"}
    for entry in header.get("context_for_documents", []):
        if isinstance(entry, dict) and entry.get("document_key") == document_key:
            excerpt["document"] = entry
            break
    return excerpt


def normalize_json_document(text: str, document_key: str) -> str:
    """Validate a JSON-format document and return it pretty-printed."""
    data = parse_json_object(text, f"document {document_key!r}")
    return json.dumps(data, indent=2, ensure_ascii=False)
