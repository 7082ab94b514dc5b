"""
State Store - persisted agent state and append-only analysis log.

Persisted state (parameter generation, open intents and plans, open trades,
attribution records, symbol halts) is written as one JSON document per
snapshot with a monotonic snapshot id. Each document carries a SHA256
signature of its payload; startup restores the newest document whose
signature verifies, so a torn or corrupted write falls back to the previous
consistent snapshot.

Analyses are logged as JSON records, one per line.
"""

import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from shared.models import ExecutionPlan, ParameterGeneration, PerformanceReport, TradeIntent

logger = logging.getLogger(__name__)

_SNAPSHOT_RE = re.compile(r"^state-(\d{8})\.json$")


@dataclass
class PersistedState:
    """Everything restored at startup."""
    snapshot_id: int
    ts: float
    generation: ParameterGeneration
    open_intents: list[TradeIntent] = field(default_factory=list)
    open_plans: list[ExecutionPlan] = field(default_factory=list)
    open_trades: list[dict[str, Any]] = field(default_factory=list)
    attribution: list[PerformanceReport] = field(default_factory=list)
    halted: dict[str, str] = field(default_factory=dict)
    equity: Optional[float] = None
    peak_equity: Optional[float] = None


def _signature(payload: dict) -> str:
    data_str = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(data_str.encode()).hexdigest()


class StateStore:
    """
    Snapshot writer/reader for persisted state.

    Writes are atomic: the document is written to a temp file, fsynced and
    renamed over the final name.
    """

    def __init__(self, state_dir: str, keep: int = 20):
        self.state_dir = Path(state_dir)
        self.keep = keep
        self.state_dir.mkdir(parents=True, exist_ok=True)
        existing = self._snapshot_ids()
        self._next_id = (existing[-1] + 1) if existing else 1

    def _snapshot_ids(self) -> list[int]:
        ids = []
        for path in self.state_dir.iterdir():
            m = _SNAPSHOT_RE.match(path.name)
            if m:
                ids.append(int(m.group(1)))
        return sorted(ids)

    def _path(self, snapshot_id: int) -> Path:
        return self.state_dir / f"state-{snapshot_id:08d}.json"

    def save(
        self,
        ts: float,
        generation: ParameterGeneration,
        open_intents: list[TradeIntent] = (),
        open_plans: list[ExecutionPlan] = (),
        open_trades: list[dict[str, Any]] = (),
        attribution: list[PerformanceReport] = (),
        halted: Optional[dict[str, str]] = None,
        equity: Optional[float] = None,
        peak_equity: Optional[float] = None,
    ) -> int:
        """
        Persist a snapshot.

        Returns:
            The snapshot id written (strictly increasing)
        """
        snapshot_id = self._next_id
        payload = {
            "snapshot_id": snapshot_id,
            "ts": ts,
            "generation": generation.model_dump(mode="json"),
            "open_intents": [i.model_dump(mode="json") for i in open_intents],
            "open_plans": [p.model_dump(mode="json") for p in open_plans],
            "open_trades": list(open_trades),
            "attribution": [r.model_dump(mode="json") for r in attribution],
            "halted": dict(halted or {}),
            "equity": equity,
            "peak_equity": peak_equity,
        }
        document = {"payload": payload, "signature": _signature(payload)}

        path = self._path(snapshot_id)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(document, f, default=str)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

        self._next_id = snapshot_id + 1
        self._prune()
        logger.debug(f"State snapshot {snapshot_id} written (generation {generation.generation})")
        return snapshot_id

    def _prune(self) -> None:
        ids = self._snapshot_ids()
        for old in ids[:-self.keep]:
            try:
                self._path(old).unlink()
            except FileNotFoundError:
                pass

    def _read(self, path: Path) -> Optional[PersistedState]:
        try:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
            payload = document["payload"]
            if _signature(payload) != document.get("signature"):
                logger.warning(f"Snapshot signature mismatch, skipping: {path.name}")
                return None
            return PersistedState(
                snapshot_id=payload["snapshot_id"],
                ts=payload["ts"],
                generation=ParameterGeneration.model_validate(payload["generation"]),
                open_intents=[TradeIntent.model_validate(i) for i in payload["open_intents"]],
                open_plans=[ExecutionPlan.model_validate(p) for p in payload["open_plans"]],
                open_trades=payload.get("open_trades", []),
                attribution=[PerformanceReport.model_validate(r) for r in payload["attribution"]],
                halted=payload.get("halted", {}),
                equity=payload.get("equity"),
                peak_equity=payload.get("peak_equity"),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            # pydantic.ValidationError is a ValueError
            logger.warning(f"Unreadable snapshot {path.name}: {e}")
            return None

    def load_latest(self) -> Optional[PersistedState]:
        """Restore the newest consistent snapshot (None if there is none)."""
        for snapshot_id in reversed(self._snapshot_ids()):
            state = self._read(self._path(snapshot_id))
            if state is not None:
                logger.info(
                    f"Restored state snapshot {snapshot_id} "
                    f"(parameter generation {state.generation.generation})"
                )
                return state
        return None


class AnalysisLog:
    """Append-only JSON-lines log of analyses and decisions."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.records_written = 0

    def append(self, record: dict[str, Any]) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
        self.records_written += 1

    def read_all(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        records = []
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    records.append(json.loads(line))
        return records
