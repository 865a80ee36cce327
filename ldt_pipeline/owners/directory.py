"""
Owner directory contract and file-backed implementations.

The PostgreSQL implementation lives in ldt_pipeline.warehouse.owner_directory.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from threading import RLock
from typing import Iterable

import yaml
from pydantic import ValidationError

from ldt_pipeline.core.errors import ConfigurationError
from ldt_pipeline.core.models.owner import Owner


class OwnerDirectory(ABC):
    """
    Read-only view of registered owners.
    """

    @abstractmethod
    def lookup_owner(self, bsnr: str, lanr: str) -> Owner | None:
        """
        Find the owner registered for an identifier pair.

        Args:
            bsnr: Facility number
            lanr: Physician number

        Returns:
            Owner, or None if the pair is not registered

        Raises:
            StoreFailure: If the backing store is unreachable
        """
        pass

    @abstractmethod
    def get_owner(self, user_id: str) -> Owner | None:
        """Find an owner by user id (used for forced assignment)."""
        pass

    @abstractmethod
    def list_owners(self) -> list[Owner]:
        pass


class InMemoryOwnerDirectory(OwnerDirectory):
    """
    Dict-backed directory, used in tests and dry runs.
    """

    def __init__(self, owners: Iterable[Owner] = ()):
        self._lock = RLock()
        self._by_pair: dict[tuple[str, str], Owner] = {}
        self._by_user: dict[str, Owner] = {}
        for owner in owners:
            self.add_owner(owner)

    def add_owner(self, owner: Owner) -> None:
        """
        Register an owner.

        Raises:
            ValueError: If the (bsnr, lanr) pair is already taken by another user
        """
        with self._lock:
            if owner.bsnr and owner.lanr:
                pair = (owner.bsnr, owner.lanr)
                existing = self._by_pair.get(pair)
                if existing is not None and existing.user_id != owner.user_id:
                    raise ValueError(
                        f"BSNR/LANR {owner.bsnr}/{owner.lanr} already registered to {existing.user_id}"
                    )
                self._by_pair[pair] = owner
            previous = self._by_user.get(owner.user_id)
            if previous is not None and (previous.bsnr, previous.lanr) != (owner.bsnr, owner.lanr):
                self._by_pair.pop((previous.bsnr, previous.lanr), None)
            self._by_user[owner.user_id] = owner

    def lookup_owner(self, bsnr: str, lanr: str) -> Owner | None:
        with self._lock:
            return self._by_pair.get((bsnr, lanr))

    def get_owner(self, user_id: str) -> Owner | None:
        with self._lock:
            return self._by_user.get(user_id)

    def list_owners(self) -> list[Owner]:
        with self._lock:
            return list(self._by_user.values())


class YamlOwnerDirectory(InMemoryOwnerDirectory):
    """
    Directory loaded once from a YAML file.

    Expected YAML format:
    ```yaml
    owners:
      - user_id: user-0042
        tenant_id: tenant-potsdam
        bsnr: "93860200"
        lanr: "72720053"
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Args:
            config_path: Path to the YAML owner list

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the file is malformed
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Owner directory file not found: {config_path}")
        try:
            super().__init__(self._load())
        except ValueError as e:
            raise ConfigurationError(f"Invalid owner file {self.config_path}: {e}") from e

    def _load(self) -> list[Owner]:
        with open(self.config_path) as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(config, dict) or not isinstance(config.get("owners"), list):
            raise ConfigurationError("Owner file must contain an 'owners' list")

        owners = []
        for idx, entry in enumerate(config["owners"]):
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Owner entry {idx} must be a mapping")
            # Unquoted identifiers arrive as ints
            entry = {k: str(v) if k in ("bsnr", "lanr", "user_id") and v is not None else v
                     for k, v in entry.items()}
            try:
                owners.append(Owner(**entry))
            except ValidationError as e:
                raise ConfigurationError(f"Invalid owner entry {idx}: {e}") from e
        return owners
