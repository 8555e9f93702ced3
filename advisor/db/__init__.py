# =============================================================================
# Database Package — Async SQLAlchemy Engine and ORM Models
# =============================================================================
