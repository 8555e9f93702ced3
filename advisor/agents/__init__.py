# =============================================================================
# Agents Package — LangGraph Turn Engine
# =============================================================================
#   - orchestrator.py: StateGraph for one turn (context → retrieval → plan →
#     tools → final stream → persistence), blocking and streaming entry points
#   - tools.py: closed tool registry (prices, profile, holdings, knowledge
#     base, buy/sell) with an unknown-tool fallback
#   - trades.py: parses the trailing advice block into ledger entries
# =============================================================================
