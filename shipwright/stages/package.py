"""Package stage: version the build output in the artifact store.

Identical bytes map to the already-stored version, so re-running a
revision whose build is deterministic yields the same candidate.
"""

from __future__ import annotations

from typing import Any, ClassVar

from shipwright.core.artifact_store import VersionedArtifactStore
from shipwright.core.errors import PackageFailure
from shipwright.models.runs import StageName
from shipwright.stages.base import BaseStage, StageContext


class PackageStage(BaseStage):
    """Stage 3: Package."""

    name: ClassVar[StageName] = StageName.PACKAGE

    def __init__(self, store: VersionedArtifactStore) -> None:
        self._store = store

    def execute(self, ctx: StageContext) -> dict[str, Any]:
        if ctx.build_path is None:
            raise PackageFailure("No build output to package")
        try:
            artifact = self._store.store_file(ctx.build_path, source_revision=ctx.revision)
        except OSError as exc:
            raise PackageFailure(f"Could not store {ctx.build_path}: {exc}") from exc
        ctx.artifact = artifact
        return {
            "version": artifact.version,
            "digest": artifact.digest,
            "size_bytes": artifact.size_bytes,
            "output": f"{artifact.name} stored as {artifact.version}",
        }
