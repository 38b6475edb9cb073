# tablewatch/ml/mlflow_soft_play.py

from typing import Optional, Dict, Any
import time
import logging
import mlflow
import pandas as pd

from ..detectors.collusion.scoring import SOFT_PLAY_FEATURES

logger = logging.getLogger(__name__)


class MLflowSoftPlayScorer:
    """Soft-play scorer backed by an MLflow pyfunc model"""

    def __init__(self, model_uri: str, tracking_uri: Optional[str] = None, model: Optional[Any] = None):
        self.model_uri = model_uri
        self._load_time: float = 0

        if model is not None:
            self._model = model
            return

        start = time.time()
        if tracking_uri:
            mlflow.set_tracking_uri(tracking_uri)
        self._model = mlflow.pyfunc.load_model(model_uri)
        self._load_time = time.time() - start
        logger.info(f"✅ MLflow soft-play model loaded from {model_uri} ({self._load_time:.1f}s)")

    def score(self, features: Dict[str, float]) -> float:
        df = pd.DataFrame([{name: float(features.get(name, 0.0)) for name in SOFT_PLAY_FEATURES}])
        pred = self._model.predict(df)

        value = float(pd.Series(pred).iloc[0]) if not isinstance(pred, pd.DataFrame) else float(pred.iloc[0, 0])
        return min(1.0, max(0.0, value))

    def health_check(self) -> Dict[str, Any]:
        return {
            "status": "healthy",
            "ml_type": "mlflow",
            "model_uri": self.model_uri,
            "load_time_sec": round(self._load_time, 2)
        }
