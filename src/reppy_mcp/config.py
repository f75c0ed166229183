"""Configuration for the Reppy MCP server."""
from dataclasses import dataclass
from pathlib import Path


@dataclass
class MCPConfig:
    db_path: Path
    max_rows: int = 1000

    @classmethod
    def from_db_path(cls, db_path, max_rows: int = 1000) -> "MCPConfig":
        return cls(db_path=Path(db_path), max_rows=max_rows)

    def validate(self) -> None:
        if not Path(self.db_path).exists():
            raise ValueError(f"Database not found: {self.db_path}")
        if self.max_rows < 1:
            raise ValueError("max_rows must be positive")
