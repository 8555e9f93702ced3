# =============================================================================
# API Package — FastAPI Route Handlers
# =============================================================================
#   - chat.py: POST /chat (blocking turn) and POST /chat/stream (SSE)
#   - deps.py: turn dependencies as a FastAPI dependency
# =============================================================================
