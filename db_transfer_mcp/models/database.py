"""Database, environment and initiator models resolved outside the engine."""

from pydantic import BaseModel, Field

from .enums import DatabaseKind


class DatabaseInstance(BaseModel):
    """A database container running on a managed server."""

    uuid: str
    name: str
    kind: DatabaseKind
    server_id: str
    environment_id: str
    team_id: str | None = None
    container_name: str | None = None  # Defaults to uuid, matching the deploy convention
    database_name: str | None = None
    user: str | None = None
    password: str | None = None
    image: str = ""
    status: str | None = None  # e.g. "running:healthy"; None when no running check exists

    @property
    def container(self) -> str:
        return self.container_name or self.uuid

    def exposes_running_check(self) -> bool:
        return self.status is not None

    def is_running(self) -> bool:
        """Check whether the database reports itself as running."""
        return bool(self.status) and self.status.lower().startswith("running")


class EnvironmentConfig(BaseModel):
    """Deployment environment a database belongs to."""

    id: str
    name: str
    project: str = ""
    team_id: str | None = None


class Initiator(BaseModel):
    """User requesting a transfer."""

    user_id: str
    team_ids: list[str] = Field(default_factory=list)
    current_team_id: str | None = None
