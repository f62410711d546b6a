"""Command layer: single-slot observable state for mutations and forms.

Unlike the query side there is no keying, staleness or retrying here; the
store is a plain observable record changed through explicit setters.
"""
