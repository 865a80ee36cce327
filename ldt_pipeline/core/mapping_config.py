"""
Record-type dispatch table configuration.

The assembler folds records into a FieldMap by looking up each record's
type in a table of targets. A built-in table covers the lab feeds seen in
production; a YAML file can add or override entries.
"""

from pathlib import Path

import yaml

from ldt_pipeline.core.errors import ConfigurationError

# Target names understood by MessageAssembler
SCALAR_TARGETS = {
    "lab.name",
    "lab.address",
    "patient.last_name",
    "patient.first_name",
    "patient.birth_date",
    "patient.patient_id",
    "patient.address",
    "patient.postal_code",
    "patient.city",
    "patient.gender",
    "test.request_id",
    "test.test_date",
}
PARAMETER_TARGET = "test.parameter"
BSNR_TARGET = "identifier.bsnr"
LANR_TARGET = "identifier.lanr"
VALID_TARGETS = SCALAR_TARGETS | {PARAMETER_TARGET, BSNR_TARGET, LANR_TARGET}

DEFAULT_RECORD_MAPPINGS: dict[str, str] = {
    "0201": BSNR_TARGET,
    "0203": "lab.name",
    "0205": "lab.address",
    "0212": LANR_TARGET,
    "3101": "patient.last_name",
    "3102": "patient.first_name",
    "3103": "patient.birth_date",
    "3105": "patient.patient_id",
    "3107": "patient.address",
    "3110": "patient.gender",
    "3112": "patient.postal_code",
    "3113": "patient.city",
    "4218": BSNR_TARGET,
    "4242": LANR_TARGET,
    "8300": "test.request_id",
    "8410": PARAMETER_TARGET,
    "8432": "test.test_date",
}


class RecordMappingLoader:
    """
    Loads record-type mappings from a YAML configuration file.

    Expected YAML format:
    ```yaml
    replace_defaults: false   # optional, merge with the built-in table
    mappings:
      "0203": lab.name
      "8410": test.parameter
      "9901": ~               # drop a built-in mapping
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Initialize the mapping loader.

        Args:
            config_path: Path to the YAML configuration file
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Record mapping file not found: {config_path}")

    def load_mappings(self) -> dict[str, str]:
        """
        Load the dispatch table, merged over the built-in defaults.

        Returns:
            Mapping of record type to target name

        Raises:
            ConfigurationError: If YAML is invalid or an entry is malformed
        """
        with open(self.config_path) as f:
            try:
                config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e

        if not isinstance(config, dict) or "mappings" not in config:
            raise ConfigurationError("Configuration file must contain 'mappings' section")

        overrides = config["mappings"] or {}
        if not isinstance(overrides, dict):
            raise ConfigurationError("'mappings' must be a mapping of record type to target")

        table = {} if config.get("replace_defaults", False) else dict(DEFAULT_RECORD_MAPPINGS)
        for record_type, target in overrides.items():
            record_type = self._parse_record_type(record_type)
            if target is None:
                table.pop(record_type, None)
                continue
            table[record_type] = self._parse_target(record_type, target)

        return table

    def _parse_record_type(self, record_type) -> str:
        # YAML reads unquoted 8410 as an int and 0201 as octal
        if isinstance(record_type, int):
            if record_type < 1000:
                raise ConfigurationError(
                    f"Record type {record_type} lost its leading zeros; quote it in the YAML file"
                )
            record_type = str(record_type)
        record_type = str(record_type)
        if len(record_type) != 4 or not record_type.isdigit():
            raise ConfigurationError(f"Record type '{record_type}' must be 4 digits")
        return record_type

    def _parse_target(self, record_type: str, target) -> str:
        if target not in VALID_TARGETS:
            raise ConfigurationError(
                f"Unknown target '{target}' for record type {record_type}. "
                f"Valid targets: {', '.join(sorted(VALID_TARGETS))}"
            )
        return target


def load_record_mappings(config_path: str | Path | None = None) -> dict[str, str]:
    """
    Return the dispatch table for a config path, or the defaults when None.
    """
    if config_path is None:
        return dict(DEFAULT_RECORD_MAPPINGS)
    return RecordMappingLoader(config_path).load_mappings()
