from strategy_plane.estimators.registry import EstimatorRegistry, EstimatorSlot, default_estimator

__all__ = ["EstimatorRegistry", "EstimatorSlot", "default_estimator"]
