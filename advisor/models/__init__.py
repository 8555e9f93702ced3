# =============================================================================
# Models Package
# =============================================================================
#   - domain.py: dataclasses shared by the services and the engine
#   - outputs.py: Pydantic schemas for structured model output
#   - requests.py / responses.py: API schemas
# =============================================================================
