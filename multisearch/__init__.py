"""
MultiSearch backend: per-user query history and aggregated autocomplete.
"""
