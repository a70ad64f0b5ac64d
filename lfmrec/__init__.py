"""lfmrec: latent-factor rating prediction trained with parallel SGD.

This package learns biased matrix-factorization models from sparse
``uid itemid:rating`` corpora and serves their predictions.

Modules:
    recommender: corpus pipeline, Hogwild trainer, evaluation and persistence
    api: FastAPI application exposing the trained model
"""

__version__ = "0.1.0"
