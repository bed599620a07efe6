"""Configuration file format for relmap."""

import json
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field

CONFIG_NAMES = ("relmap.yaml", "relmap.yml", "relmap.json")


class DuckDBConnection(BaseModel):
    """DuckDB connection configuration."""

    type: Literal["duckdb"] = "duckdb"
    path: str = Field(..., description="Path to DuckDB database file or :memory:")


class RelmapConfig(BaseModel):
    """relmap configuration file format.

    Can be saved as relmap.yaml or relmap.json.

    Example YAML:
        schema_dir: ./schema
        dialect: postgres
        connection:
          type: duckdb
          path: data/app.db
    """

    schema_dir: str = Field(default=".", description="Directory containing entity schema files")
    dialect: str = Field(default="duckdb", description="SQL dialect for parsing and rendering predicates")
    connection: DuckDBConnection | None = Field(default=None, description="Database used for introspection")

    def resolve_paths(self, base_dir: Path | None = None) -> "RelmapConfig":
        """Resolve relative paths against ``base_dir`` (defaults to cwd)."""
        base = base_dir or Path.cwd()

        schema_path = Path(self.schema_dir)
        if not schema_path.is_absolute():
            schema_path = (base / schema_path).resolve()

        connection = self.connection
        if connection and connection.path != ":memory:":
            db_path = Path(connection.path)
            if not db_path.is_absolute():
                connection = DuckDBConnection(path=str((base / db_path).resolve()))

        return RelmapConfig(schema_dir=str(schema_path), dialect=self.dialect, connection=connection)


def load_config(config_path: Path) -> RelmapConfig:
    """Load configuration from YAML or JSON file.

    Relative paths resolve against the config file's directory.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config file format is invalid
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    suffix = config_path.suffix.lower()
    with open(config_path) as f:
        if suffix in {".yaml", ".yml"}:
            data = yaml.safe_load(f)
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise ValueError(f"Unsupported config format: {suffix}. Use .yaml, .yml, or .json")

    config = RelmapConfig(**(data or {}))
    return config.resolve_paths(config_path.parent)


def find_config(start_dir: Path | None = None) -> Path | None:
    """Find a config file by searching up the directory tree.

    Args:
        start_dir: Directory to start searching from (defaults to cwd)

    Returns:
        Path to config file if found, None otherwise
    """
    current = (start_dir or Path.cwd()).resolve()

    while True:
        for name in CONFIG_NAMES:
            config_path = current / name
            if config_path.exists():
                return config_path

        if current.parent == current:
            return None
        current = current.parent
