"""
LLM Tic-Tac-Toe package.

Components:
- board: rules engine (BoardEngine) and prompt rendering helpers
- agent_protocol: agent move requests with bounded retry and corrective feedback
- controller: turn orchestration between Human and Agent seats (TurnController)
- history: per-pair match history ledger capped at five records
- llm_client/catalog: OpenAI-compatible completion transport and model catalog
"""
# Package exports are intentionally minimal; import modules directly as needed.
