"""Training and scoring engine for the latent-factor model.

This module contains the corpus parser, the corpus indexer, the parallel
SGD trainer, the held-out evaluator and the model persistence helpers.
"""
