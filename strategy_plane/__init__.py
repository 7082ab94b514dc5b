"""Strategy plane: analyzers, estimators and the Decision Engine."""
