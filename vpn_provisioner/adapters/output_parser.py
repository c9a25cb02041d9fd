"""Turns the stdout of a provisioning script into a ``ProvisioningResult``.

Markers are matched per line, after stripping surrounding whitespace, so
noise such as ``UNSUCCESSFUL`` or a banner that mentions ``ERROR`` mid-line
does not classify the output.
"""

from __future__ import annotations

import re

from ..errors import ParseError
from ..models import ErrorReason, ProvisioningResult, RawOutput, ResultStatus
from .scripts.common import ERR_ALREADY_EXISTS, ERR_NOT_FOUND, MARK_DEBUG, MARK_ERROR, MARK_SUCCESS

EXPIRY_TAG_RE = re.compile(r"\[RAW_EXPIRY:(\d{4}-\d{2}-\d{2})\]")
_DEBUG_FIELD_RE = re.compile(r"^([a-z][a-z0-9_]*)=(.*)$")


def _classify_reason(text: str) -> ErrorReason:
    lowered = text.strip().lower()
    if lowered.startswith(ERR_ALREADY_EXISTS.lower()):
        return ErrorReason.ALREADY_EXISTS
    if lowered.startswith(ERR_NOT_FOUND.lower()):
        return ErrorReason.NOT_FOUND
    return ErrorReason.GENERIC


def parse_text(text: str) -> ProvisioningResult:
    lines = [line.strip() for line in (text or "").replace("\r\n", "\n").split("\n")]
    lines = [line for line in lines if line]

    saw_success = False
    errors: list[str] = []
    fields: dict[str, str] = {}

    for line in lines:
        if line == MARK_SUCCESS or line.startswith(MARK_SUCCESS + ":"):
            saw_success = True
            continue
        if line.startswith(MARK_ERROR):
            errors.append(line[len(MARK_ERROR):].strip())
            continue
        if line.startswith(MARK_DEBUG):
            match = _DEBUG_FIELD_RE.match(line[len(MARK_DEBUG):].strip())
            if match:
                # First value wins; later repeats are diagnostics.
                fields.setdefault(match.group(1), match.group(2).strip())

    tag = extract_expiry_tag(text or "")
    if tag and "expiry_tag" not in fields:
        fields["expiry_tag"] = tag

    if errors:
        reason_text = errors[0]
        return ProvisioningResult(
            status=ResultStatus.ERROR,
            message=reason_text,
            reason=_classify_reason(reason_text),
            reason_text=reason_text,
            fields=fields,
            lines=lines,
        )
    if saw_success:
        return ProvisioningResult(status=ResultStatus.SUCCESS, message=MARK_SUCCESS, fields=fields, lines=lines)

    raise ParseError("Output server tidak dikenali.", detail="\n".join(lines[-5:]))


def parse(raw: RawOutput | str) -> ProvisioningResult:
    if isinstance(raw, RawOutput):
        return parse_text(raw.stdout)
    return parse_text(raw)


def embed_expiry_tag(message: str, expiry: str) -> str:
    if not expiry:
        return message
    return f"{message}\n[RAW_EXPIRY:{expiry}]"


def extract_expiry_tag(text: str) -> str | None:
    match = EXPIRY_TAG_RE.search(text or "")
    return match.group(1) if match else None


def strip_expiry_tag(text: str) -> str:
    return EXPIRY_TAG_RE.sub("", text or "").rstrip()
