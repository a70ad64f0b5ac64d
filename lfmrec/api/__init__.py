"""HTTP API for lfmrec.

Serves rating predictions and top-N item lists from a persisted model.
"""
