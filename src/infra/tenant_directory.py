"""
Tenant directory backed by a JSON file.

File format (either form):
    {"tenants": [{"tenant_id": "...", "timezone": "America/Chicago", ...}]}
    [{"tenant_id": "...", ...}]

Records are validated with pydantic; inactive tenants are skipped.
"""

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TENANT_DIRECTORY_PATH = "./data/tenants.json"


class TenantDirectoryError(Exception):
    """Raised when the directory file cannot be read or validated."""
    pass


class TenantRecord(BaseModel):
    """One tenant as listed in the directory file."""

    tenant_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("tenant_id", "dealer_id"),
        description="Tenant identifier",
    )
    tenant_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("tenant_name", "dealer_name", "name"),
        description="Display name",
    )
    timezone: Optional[str] = Field(default=None, description="IANA timezone, detected from address if unset")
    preferred_local_time: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("preferred_local_time", "preferred_time"),
        description="HH:MM local start time",
    )
    priority_tier: str = Field(
        default="standard",
        validation_alias=AliasChoices("priority_tier", "priority"),
        description="premium, standard or economy",
    )
    frequency: str = Field(default="daily", description="Run frequency")
    address: Optional[str] = Field(default=None, description="Postal address for timezone detection")
    active: bool = Field(default=True, description="Inactive tenants are not scheduled")


class TenantDirectoryFile(BaseModel):
    tenants: List[TenantRecord] = Field(default_factory=list)


class JsonTenantDirectory:
    """Reads tenant records from a JSON file on every call."""

    def __init__(self, path: str | Path = DEFAULT_TENANT_DIRECTORY_PATH):
        self.path = Path(path)

    def load(self) -> List[TenantRecord]:
        """
        All tenant records in the file.

        Raises:
            TenantDirectoryError: If the file is missing, not JSON or invalid
        """
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise TenantDirectoryError(f"Tenant directory not found: {self.path}") from e
        except json.JSONDecodeError as e:
            raise TenantDirectoryError(f"Tenant directory is not valid JSON: {self.path}: {e}") from e

        if isinstance(raw, list):
            raw = {"tenants": raw}

        try:
            return TenantDirectoryFile.model_validate(raw).tenants
        except ValidationError as e:
            raise TenantDirectoryError(f"Invalid tenant directory {self.path}: {e}") from e

    def list_active_tenants(self) -> List[TenantRecord]:
        """Active tenant records, in file order."""
        records = self.load()
        active = [record for record in records if record.active]
        logger.info(
            f"Loaded {len(active)} active tenants from {self.path} "
            f"({len(records) - len(active)} inactive skipped)"
        )
        return active
