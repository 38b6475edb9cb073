from .mlflow_soft_play import MLflowSoftPlayScorer

__all__ = ["MLflowSoftPlayScorer"]
