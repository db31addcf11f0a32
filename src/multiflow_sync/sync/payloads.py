"""Pydantic models for the /sync request bodies."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from multiflow_sync.errors import PayloadValidationError
from multiflow_sync.sync.protocol import SyncKind
from multiflow_sync.utils.timeutils import utcnow

# Local role names that the remote service spells differently
_ROLE_ALIASES = {"agent": "attendant"}


class UserSyncPayload(BaseModel):
    """Body of ``POST /sync/user``."""

    model_config = ConfigDict(populate_by_name=True)

    firebase_uid: str = Field(..., alias="firebaseUid", min_length=1)
    email: str = Field(..., min_length=1, max_length=320)
    display_name: str = Field("", alias="displayName")
    role: str = ""
    sector: str = ""
    sector_name: str = Field("", alias="sectorName")
    is_active: bool = Field(True, alias="isActive")
    last_synced_at: datetime = Field(default_factory=utcnow, alias="lastSyncedAt")

    @classmethod
    def from_user(cls, user: dict[str, Any]) -> UserSyncPayload:
        """Build from a local user profile document."""
        role = user.get("role") or ""
        return cls(
            firebaseUid=user.get("firebaseUid") or user.get("id") or "",
            email=user.get("email") or "",
            displayName=user.get("displayName") or "",
            role=_ROLE_ALIASES.get(role, role),
            sector=user.get("sector") or "",
            sectorName=user.get("sectorName") or "",
            isActive=user.get("isActive") is not False,
        )


class SectorSyncPayload(BaseModel):
    """Body of ``POST /sync/sector``."""

    model_config = ConfigDict(populate_by_name=True)

    sector_id: str = Field(..., alias="_id", min_length=1)
    nome: str = Field(..., min_length=1, max_length=200)
    descricao: str = ""
    responsavel: str = ""
    ativo: bool = True
    firebase_id: str = Field("", alias="firebaseId")
    last_synced_at: datetime = Field(default_factory=utcnow, alias="lastSyncedAt")

    @classmethod
    def from_sector(cls, sector: dict[str, Any]) -> SectorSyncPayload:
        """Build from a local sector document."""
        return cls(
            _id=sector.get("_id") or sector.get("id") or "",
            nome=sector.get("nome") or "",
            descricao=sector.get("descricao") or "",
            responsavel=sector.get("responsavel") or "",
            ativo=sector.get("ativo") is not False,
            firebaseId=sector.get("firebaseId") or sector.get("id") or "",
        )


def build_payload(kind: SyncKind | str, data: dict[str, Any] | BaseModel) -> dict[str, Any]:
    """Validate local data and return the JSON body for ``kind``.

    Raises:
        PayloadValidationError: if the kind is unknown or the data is malformed.
    """
    try:
        kind = SyncKind(kind)
    except ValueError as e:
        raise PayloadValidationError(f"Unknown sync kind: {kind}") from e

    try:
        if isinstance(data, (UserSyncPayload, SectorSyncPayload)):
            model: BaseModel = data
        elif kind == SyncKind.USER:
            model = UserSyncPayload.from_user(dict(data))
        else:
            model = SectorSyncPayload.from_sector(dict(data))
    except ValidationError as e:
        raise PayloadValidationError(f"Invalid {kind.value} payload: {e}", errors=e) from e

    if kind == SyncKind.USER and not isinstance(model, UserSyncPayload):
        raise PayloadValidationError("Sector payload given for a user sync")
    if kind == SyncKind.SECTOR and not isinstance(model, SectorSyncPayload):
        raise PayloadValidationError("User payload given for a sector sync")

    return model.model_dump(by_alias=True, mode="json")
