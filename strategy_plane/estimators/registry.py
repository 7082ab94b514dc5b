"""
Estimator registry.

Holds one opaque classifier per name (the analyzer's `estimator_name`).
Each estimator maps a fixed-length feature vector to P(up) in [0, 1].

Slow path: outcomes are recorded into a bounded experience buffer;
retrain() fits a candidate on the rolling window and activates it only if
its held-out accuracy reaches min_model_accuracy. Otherwise the previous
estimator (or none) stays active.

Fast path: predict_async() offloads inference to the worker pool.
"""

import asyncio
import logging
import threading
from collections import deque
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import numpy as np
from sklearn.metrics import accuracy_score
from sklearn.model_selection import train_test_split
from sklearn.neural_network import MLPClassifier
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler

from shared.config import LearningConfig

logger = logging.getLogger(__name__)

EstimatorFactory = Callable[[int], Any]


def default_estimator(seed: int) -> Pipeline:
    """Scaled two-layer perceptron."""
    return Pipeline([
        ("scale", StandardScaler()),
        ("mlp", MLPClassifier(hidden_layer_sizes=(32, 16), max_iter=500, random_state=seed)),
    ])


@dataclass
class EstimatorSlot:
    """Experience buffer and active model for one estimator name."""
    name: str
    experience: deque
    active: Any = None
    version: int = 0
    accuracy: Optional[float] = None
    n_features: Optional[int] = None
    rejected_candidates: int = 0
    history: list = field(default_factory=list)


class EstimatorRegistry:
    """
    Named estimators with gated retraining.

    Usage:
        registry = EstimatorRegistry(config.learning, executor)
        registry.record_outcome("swing", features, label=1)
        registry.retrain("swing")
        p_up = await registry.predict_async("swing", features)
    """

    def __init__(
        self,
        config: Optional[LearningConfig] = None,
        executor: Optional[Executor] = None,
        factory: EstimatorFactory = default_estimator,
        seed: int = 42,
    ):
        self.config = config or LearningConfig()
        self.executor = executor
        self.factory = factory
        self.seed = seed
        self._slots: dict[str, EstimatorSlot] = {}
        self._lock = threading.Lock()

    def _slot(self, name: str) -> EstimatorSlot:
        slot = self._slots.get(name)
        if slot is None:
            slot = EstimatorSlot(name=name, experience=deque(maxlen=self.config.experience_capacity))
            self._slots[name] = slot
        return slot

    def names(self) -> list[str]:
        return sorted(self._slots)

    # ------------------------------------------------------------------
    # Experience
    # ------------------------------------------------------------------

    def record_outcome(self, name: str, features: np.ndarray, label: int) -> None:
        """Append a labelled sample (label 1 = price went up over the horizon)."""
        x = np.asarray(features, dtype=float).ravel()
        if not np.all(np.isfinite(x)):
            logger.debug(f"Dropping non-finite sample for estimator {name}")
            return
        with self._lock:
            slot = self._slot(name)
            if slot.n_features is None:
                slot.n_features = len(x)
            elif len(x) != slot.n_features:
                logger.warning(f"Estimator {name}: feature length {len(x)} != {slot.n_features}, sample dropped")
                return
            slot.experience.append((x, 1 if label else 0))

    def experience_size(self, name: str) -> int:
        slot = self._slots.get(name)
        return len(slot.experience) if slot else 0

    # ------------------------------------------------------------------
    # Retraining
    # ------------------------------------------------------------------

    def retrain(self, name: str) -> bool:
        """
        Fit a candidate on the rolling window with a held-out split.

        Returns:
            True if the candidate was activated
        """
        with self._lock:
            slot = self._slot(name)
            samples = list(slot.experience)

        if len(samples) < self.config.min_training_samples:
            logger.info(
                f"Estimator {name}: {len(samples)} samples < {self.config.min_training_samples}, skipping retrain"
            )
            return False

        X = np.vstack([s[0] for s in samples])
        y = np.array([s[1] for s in samples])
        if len(np.unique(y)) < 2:
            logger.info(f"Estimator {name}: single-class window, skipping retrain")
            return False

        X_train, X_test, y_train, y_test = train_test_split(
            X, y, test_size=self.config.holdout_fraction, random_state=self.seed, shuffle=True,
        )
        if len(np.unique(y_train)) < 2:
            return False

        candidate = self.factory(self.seed + slot.version + 1)
        candidate.fit(X_train, y_train)
        accuracy = float(accuracy_score(y_test, candidate.predict(X_test)))
        slot.history.append({"samples": len(samples), "accuracy": accuracy})

        if accuracy < self.config.min_model_accuracy:
            slot.rejected_candidates += 1
            logger.warning(
                f"Estimator {name}: candidate accuracy {accuracy:.3f} < "
                f"{self.config.min_model_accuracy:.3f}, keeping version {slot.version}"
            )
            return False

        with self._lock:
            slot.active = candidate
            slot.version += 1
            slot.accuracy = accuracy
        logger.info(f"Estimator {name}: activated version {slot.version} (held-out accuracy {accuracy:.3f})")
        return True

    def retrain_all(self) -> dict[str, bool]:
        return {name: self.retrain(name) for name in self.names()}

    def install(self, name: str, model: Any, accuracy: Optional[float] = None) -> None:
        """Activate a pre-fitted estimator (e.g. restored from disk)."""
        with self._lock:
            slot = self._slot(name)
            slot.active = model
            slot.version += 1
            slot.accuracy = accuracy

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def active(self, name: Optional[str]) -> bool:
        slot = self._slots.get(name) if name else None
        return slot is not None and slot.active is not None

    def predict(self, name: str, features: np.ndarray) -> Optional[float]:
        """P(up) from the active estimator, None if there is none."""
        slot = self._slots.get(name)
        model = slot.active if slot else None
        if model is None:
            return None
        x = np.asarray(features, dtype=float).reshape(1, -1)
        if not np.all(np.isfinite(x)):
            return None
        proba = model.predict_proba(x)[0]
        classes = list(model.classes_)
        if 1 not in classes:
            return 0.0
        return float(np.clip(proba[classes.index(1)], 0.0, 1.0))

    async def predict_async(self, name: str, features: np.ndarray) -> Optional[float]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.predict, name, features)

    def stats(self) -> dict[str, dict]:
        return {
            name: {
                "version": slot.version,
                "accuracy": slot.accuracy,
                "samples": len(slot.experience),
                "rejected_candidates": slot.rejected_candidates,
            }
            for name, slot in self._slots.items()
        }
