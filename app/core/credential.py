from __future__ import annotations

import json
import re
from collections.abc import Mapping
from html import escape
from typing import Any, Literal

import qrcode
import qrcode.image.svg
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from app.core.local_time import parse_issue_date
from app.schemas.common import CredentialPayload, HolderProfile

CURRENT_PAYLOAD_VERSION = 2
LEGACY_PAYLOAD_VERSION = 1

PAYLOAD_FIELD_ORDER = ("name", "section", "parent_number", "user_id", "date", "sig", "v")


class CredentialDecodeError(ValueError):
    pass


class MalformedPayloadError(CredentialDecodeError):
    pass


class UnsupportedVersionError(CredentialDecodeError):
    def __init__(self, version: int) -> None:
        super().__init__(f"Credential payload version {version} is not supported.")
        self.version = version


class _VersionedPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(min_length=1)
    date: str
    sig: str

    @field_validator("date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        parse_issue_date(value)
        return value

    @field_validator("user_id", "name", "section", "parent_number", check_fields=False)
    @classmethod
    def _check_text(cls, value: str | None) -> str | None:
        # JSON escapes can smuggle in unpaired surrogates, which no store can hold.
        if value is not None and not value.isascii():
            try:
                value.encode("utf-8")
            except UnicodeEncodeError as exc:
                raise ValueError("Field contains an unpaired surrogate.") from exc
        return value


class PayloadV1(_VersionedPayload):
    """First-generation payload: ``v`` absent, holder fields optional."""

    name: str = ""
    section: str | None = None
    parent_number: str | None = None
    v: Literal[1] = 1

    def to_credential(self) -> CredentialPayload:
        return CredentialPayload(
            name=self.name,
            section=self.section,
            parent_number=self.parent_number,
            user_id=self.user_id,
            date=self.date,
            sig=self.sig,
            v=LEGACY_PAYLOAD_VERSION,
        )


class PayloadV2(_VersionedPayload):
    name: str
    section: str | None
    parent_number: str | None
    v: Literal[2]

    def to_credential(self) -> CredentialPayload:
        return CredentialPayload(**self.model_dump())


PAYLOAD_VERSIONS: dict[int, type[PayloadV1] | type[PayloadV2]] = {
    LEGACY_PAYLOAD_VERSION: PayloadV1,
    CURRENT_PAYLOAD_VERSION: PayloadV2,
}


def encode_credential(holder: HolderProfile, issue_date: str, signature: str) -> CredentialPayload:
    return CredentialPayload(
        name=holder.name,
        section=holder.section,
        parent_number=holder.parent_number,
        user_id=holder.user_id,
        date=issue_date,
        sig=signature,
        v=CURRENT_PAYLOAD_VERSION,
    )


def serialize_payload(payload: CredentialPayload) -> str:
    data = payload.model_dump()
    ordered = {key: data[key] for key in PAYLOAD_FIELD_ORDER}
    return json.dumps(ordered, separators=(",", ":"), ensure_ascii=False)


def credential_watermark(payload: CredentialPayload) -> str:
    return payload.date


def _load_mapping(raw: str | bytes | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayloadError("Payload is not valid UTF-8.") from exc
    if not isinstance(raw, str):
        raise MalformedPayloadError("Payload must be JSON text or an object.")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedPayloadError("Payload is not valid JSON.") from exc
    if not isinstance(data, dict):
        raise MalformedPayloadError("Payload must be a JSON object.")
    return data


def payload_version(data: Mapping[str, Any]) -> int:
    if "v" not in data or data["v"] is None:
        return LEGACY_PAYLOAD_VERSION
    version = data["v"]
    if isinstance(version, bool) or not isinstance(version, int):
        raise MalformedPayloadError("Payload version must be an integer.")
    if version > max(PAYLOAD_VERSIONS):
        raise UnsupportedVersionError(version)
    if version not in PAYLOAD_VERSIONS:
        raise MalformedPayloadError(f"Unknown payload version {version}.")
    return version


def decode_payload(raw: str | bytes | Mapping[str, Any]) -> CredentialPayload:
    data = _load_mapping(raw)
    version = payload_version(data)
    model = PAYLOAD_VERSIONS[version]
    fields = dict(data)
    if fields.get("v") is None:
        fields.pop("v", None)
    try:
        return model.model_validate(fields).to_credential()
    except ValidationError as exc:
        raise MalformedPayloadError(f"Payload fields are invalid for version {version}.") from exc


def credential_export_filename(payload: CredentialPayload) -> str:
    stem = re.sub(r"\s+", "_", payload.name.strip()) or payload.user_id
    return f"{stem}_QR_{payload.date}.svg"


def render_credential_svg(payload: CredentialPayload, *, box_size: int = 10, border: int = 4) -> str:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
        image_factory=qrcode.image.svg.SvgPathImage,
    )
    qr.add_data(serialize_payload(payload))
    qr.make(fit=True)
    code_svg = qr.make_image().to_string(encoding="unicode")
    watermark = escape(credential_watermark(payload))
    return (
        '<svg xmlns="http://www.w3.org/2000/svg">'
        f"{code_svg}"
        '<text x="98%" y="98%" text-anchor="end" font-family="monospace" font-size="12" '
        f'fill="#1e3a8a">{watermark}</text>'
        "</svg>"
    )
