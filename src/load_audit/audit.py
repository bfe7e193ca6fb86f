"""Hash-chained decision log and phase checkpoints for load-audit runs."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional

SCHEMA_DECISION_V1 = "load_audit.decision.v1"
SCHEMA_CHECKPOINT_V1 = "load_audit.checkpoint.v1"
SCHEMA_HASH_CHAIN_V1 = "load_audit.hash_chain.v1"
GENESIS_HASH = "0" * 64

PHASE_STORY_BUCKETING = (1, "story_bucketing")
PHASE_GROUPING = (2, "grouping")
PHASE_DECOMPOSITION = (3, "decomposition")
PHASE_AGGREGATION = (4, "aggregation")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def canonical_json(payload: Dict[str, object]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class CheckpointHandle:
    phase_index: int
    phase_name: str
    path: Path
    payload_sha256: str


class AuditTrail:
    """Append-only record of why each audit row reads the way it does.

    Every decomposition arbitration and union degradation is appended to
    ``decision_log.jsonl``; each record carries the hash of its predecessor
    so any edit to the log is detectable. Phase checkpoints snapshot counts
    and the vector-sum invariants of the tree as it is built.
    """

    def __init__(self, run_id: str, artifacts_dir: Path):
        self.run_id = run_id
        self.artifacts_dir = Path(artifacts_dir)
        self.checkpoints_dir = self.artifacts_dir / "checkpoints"
        self.checkpoints_dir.mkdir(parents=True, exist_ok=True)
        self.decision_log_path = self.artifacts_dir / "decision_log.jsonl"
        self.hash_chain_path = self.artifacts_dir / "decision_hash_chain.json"
        self._seq = 0
        self._last_hash = GENESIS_HASH
        self._chain: List[Dict[str, object]] = []
        self._handles: List[CheckpointHandle] = []

    @property
    def decision_count(self) -> int:
        return self._seq

    @property
    def checkpoints(self) -> List[CheckpointHandle]:
        return list(self._handles)

    # ─── Decisions ───────────────────────────────────────────────────────

    def record_decomposition(
        self,
        *,
        pattern: str,
        story: str,
        element_ids: Iterable[str],
        trace: Dict[str, object],
    ) -> Dict[str, object]:
        """Log one shape arbitration (alternatives, winner, reason codes)."""
        return self._append(
            phase=PHASE_DECOMPOSITION,
            decision_type="shape_decomposition",
            element_ids=element_ids,
            selected=str(trace.get("selected", "")),
            reason_codes=trace.get("reason_codes", []),
            details={
                "pattern": pattern,
                "story": story,
                "alternatives": trace.get("alternatives", []),
                "formula": trace.get("formula", ""),
                "term_count": trace.get("term_count", 0),
                "exact": trace.get("exact", False),
            },
        )

    def record_loose_union(
        self,
        *,
        pattern: str,
        story: str,
        element_ids: Iterable[str],
        group_key: str,
    ) -> Dict[str, object]:
        return self._append(
            phase=PHASE_GROUPING,
            decision_type="footprint_union",
            element_ids=element_ids,
            selected="loose",
            reason_codes=["union_failed"],
            details={"pattern": pattern, "story": story, "group_key": group_key},
        )

    def _append(
        self,
        *,
        phase,
        decision_type: str,
        element_ids: Iterable[str],
        selected: str,
        reason_codes: Iterable[str],
        details: Dict[str, object],
    ) -> Dict[str, object]:
        self._seq += 1
        phase_index, phase_name = phase
        record: Dict[str, object] = {
            "schema_version": SCHEMA_DECISION_V1,
            "run_id": self.run_id,
            "seq": self._seq,
            "timestamp_utc": _utc_now_iso(),
            "phase_index": phase_index,
            "phase_name": phase_name,
            "decision_type": decision_type,
            "element_ids": list(element_ids),
            "selected": selected,
            "reason_codes": list(reason_codes),
            "details": details,
            "previous_hash": self._last_hash,
        }
        digest = sha256_text(canonical_json(record))
        record["hash"] = digest

        with self.decision_log_path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, sort_keys=True) + "\n")
        self._chain.append({"seq": self._seq, "hash": digest, "previous_hash": self._last_hash})
        self._last_hash = digest
        return record

    # ─── Checkpoints ─────────────────────────────────────────────────────

    def write_checkpoint(
        self,
        *,
        phase,
        counts: Dict[str, int],
        invariants: Dict[str, object],
        outputs: Optional[Dict[str, object]] = None,
        scope: Optional[str] = None,
    ) -> CheckpointHandle:
        phase_index, phase_name = phase
        stem = f"phase_{phase_index:02d}_{phase_name}"
        if scope:
            stem += "_" + re.sub(r"[^A-Za-z0-9_.-]", "_", scope)
        path = self.checkpoints_dir / f"{stem}.json"
        payload: Dict[str, object] = {
            "schema_version": SCHEMA_CHECKPOINT_V1,
            "run_id": self.run_id,
            "phase_index": phase_index,
            "phase_name": phase_name,
            "scope": scope,
            "timestamp_utc": _utc_now_iso(),
            "counts": counts,
            "invariants": invariants,
            "outputs": outputs or {},
        }
        payload_sha = sha256_text(canonical_json(payload))
        payload["payload_sha256"] = payload_sha
        path.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")

        handle = CheckpointHandle(phase_index, phase_name, path, payload_sha)
        self._handles.append(handle)
        return handle

    def finalize(self) -> Path:
        manifest = {
            "schema_version": SCHEMA_HASH_CHAIN_V1,
            "run_id": self.run_id,
            "final_hash": self._last_hash,
            "decision_count": self._seq,
            "entries": self._chain,
            "checkpoints": [
                {"phase_index": h.phase_index, "phase_name": h.phase_name,
                 "path": str(h.path), "payload_sha256": h.payload_sha256}
                for h in self._handles
            ],
        }
        self.hash_chain_path.write_text(json.dumps(manifest, indent=2, sort_keys=True),
                                        encoding="utf-8")
        return self.hash_chain_path


def verify_decision_log(path: Path) -> bool:
    """Recompute the hash chain of a decision log; False on any break."""
    previous = GENESIS_HASH
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        record = json.loads(line)
        if record.get("previous_hash") != previous:
            return False
        digest = record.pop("hash", None)
        if digest != sha256_text(canonical_json(record)):
            return False
        previous = digest
    return True
