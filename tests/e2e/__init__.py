"""
End-to-end scenarios for the token agent.

test_scenarios.py drives assessments through the decision engine, risk
gate, planner, execution engine and performance tracker on a virtual
clock against the paper exchange.

All E2E tests are marked with @pytest.mark.e2e.
Run with: pytest tests/e2e/ -v -m e2e
"""
