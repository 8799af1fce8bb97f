from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from .models import EnrichedPiece
from .schemas import (
    BatchReturn, PieceActivationManifest, ProveCommitSectors3Params, ProveReplicaUpdates3Params,
)

logger = logging.getLogger(__name__)

# miner actor method numbers
PROVE_REPLICA_UPDATES = 27          # legacy, carries no DDO manifest
PROVE_COMMIT_SECTORS3 = 34
PROVE_REPLICA_UPDATES3 = 35

EXPECTED_METHOD: dict[str, int] = {
    "sector-activated": PROVE_COMMIT_SECTORS3,
    "sector-updated": PROVE_REPLICA_UPDATES3,
}
PARAMS_SCHEMA: dict[int, str] = {
    PROVE_COMMIT_SECTORS3: "ProveCommitSectors3Params",
    PROVE_REPLICA_UPDATES3: "ProveReplicaUpdates3Params",
}

F05_ADDRESS = b"\x00\x05"           # ID address protocol byte + uvarint(5)


@dataclass(slots=True, frozen=True)
class SectorManifest:
    sector: int
    pieces: tuple[PieceActivationManifest, ...]


def sector_manifests(params: ProveCommitSectors3Params | ProveReplicaUpdates3Params) -> list[SectorManifest]:
    if isinstance(params, ProveCommitSectors3Params):
        return [SectorManifest(a.sector_number, tuple(a.pieces)) for a in params.sector_activations]
    return [SectorManifest(u.sector, tuple(u.pieces)) for u in params.sector_updates]


def drop_failed(manifests: Sequence[SectorManifest], batch: BatchReturn) -> list[SectorManifest]:
    """Remove entries the actor reported as failed in its batch return."""
    failed = {fc.idx for fc in batch.fail_codes}
    return [m for i, m in enumerate(manifests) if i not in failed]


def select_sector(manifests: Sequence[SectorManifest], sector: int) -> SectorManifest | None:
    matches = [m for m in manifests if m.sector == sector]
    if len(matches) != 1:
        logger.warning("expected exactly one manifest for sector %s, found %d", sector, len(matches))
        return None
    return matches[0]


def enrich_pieces(manifest: SectorManifest, *, context: str = "") -> tuple[EnrichedPiece, ...]:
    out: list[EnrichedPiece] = []
    for piece in manifest.pieces:
        targets = [n.address for n in piece.notify]
        f05 = F05_ADDRESS in targets
        others = [t for t in targets if t != F05_ADDRESS]
        if others:
            logger.warning(
                "unexpected notification target(s) %s for piece %s %s",
                [t.hex() for t in others], piece.cid, context,
            )
        out.append(EnrichedPiece(
            cid=piece.cid,
            size=piece.size,
            verified=piece.verified_allocation_key is not None,
            f05=f05,
        ))
    return tuple(out)
