# =============================================================================
# Services Package — Business Logic
# =============================================================================
#   - retrieval.py: cosine ranking over stored document embeddings
#   - embedder.py: OpenAI embeddings provider
#   - context.py: renders portfolio / market / documents / history text
#   - prompts.py: planning and final-answer prompts
#   - sanitizer.py: extracts and validates structured model output
#   - llm.py: Anthropic / OpenAI-compatible providers, blocking + streaming
#   - store.py: session, portfolio, history, ledger and quote storage
# =============================================================================
