"""Per-identity data directories, bind-mounted into each container.

A volume outlives any container incarnation: re-creating a container with
the same identity reuses the directory. Nothing here ever deletes one.
"""

from __future__ import annotations

from pathlib import Path

from mcnode.errors import FilesystemError, ValidationError
from mcnode.identity import ContainerIdentity
from mcnode.logger import logger


class VolumeProvisioner:
    def __init__(self, root: Path) -> None:
        self.root = root

    def path_for(self, identity: ContainerIdentity) -> Path:
        return self.root / identity.name

    def ensure(self, identity: ContainerIdentity) -> Path:
        """Create the volume directory (and missing parents) if absent."""
        path = self.path_for(identity)
        if path.is_dir():
            return path
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FilesystemError(f"failed to create volume dir {path}: {exc}") from exc
        logger.info("Created volume directory", identity=identity.name, path=str(path))
        return path

    def resolve_file(self, identity: ContainerIdentity, relative: str) -> Path:
        """Join *relative* onto the identity's volume, refusing anything that escapes it.

        An empty *relative* resolves to the volume root itself.
        """
        base = self.path_for(identity).resolve()
        if Path(relative).is_absolute():
            raise ValidationError(f"path must be relative: {relative}")
        target = (base / relative).resolve()
        if target != base and base not in target.parents:
            raise ValidationError(f"path escapes the server directory: {relative}")
        return target
