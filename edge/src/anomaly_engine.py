"""
Statistical anomaly engine.

Each camera keeps 24 Gaussian models, one per local hour of day, trained
online from observations accumulated while learning is enabled.
"""

import os
import tempfile
import threading
from collections import deque
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
from loguru import logger

from shared.interfaces.anomaly import IAnomalyDetector, IAnomalyModel
from shared.interfaces.config import IConfigService
from shared.models import DeviceConfig, FeatureVector, FrameAnalysisResult, stack_features
from shared.time_utils import day_of_week, hour_of_day, time_of_day_seconds


HOURS_PER_DAY = 24
TRAINING_BATCH_SIZE = 100
# Rolling window of samples kept per hour for retraining
MAX_BASELINE_SAMPLES = 1000
RECENT_HISTORY_SIZE = 1000
MIN_STD_DEV = 1e-5
MODEL_FILE_SUFFIX = ".npz"

STATISTICAL_ANOMALY = ("StatisticalAnomaly", "Activity deviates from normal patterns")


class GaussianModel(IAnomalyModel):
    """
    Independent per-feature Gaussian model.

    Scores are 1 - exp(-d / 2n) where d is the sum of squared z-scores over
    the features with non-degenerate deviation and n is the feature count.
    """

    def __init__(self):
        self.mean: Optional[np.ndarray] = None
        self.std_dev: Optional[np.ndarray] = None
        self._trained = False

    def is_trained(self) -> bool:
        return self._trained

    def train(self, samples: np.ndarray) -> bool:
        """Fit mean and population standard deviation; empty input is ignored."""
        data = np.asarray(samples, dtype=np.float64)
        if data.ndim != 2 or data.shape[0] == 0 or data.shape[1] == 0:
            logger.warning("Cannot train on empty feature set")
            return False

        self.mean = data.mean(axis=0)
        self.std_dev = data.std(axis=0)
        self._trained = True
        return True

    def score(self, features: np.ndarray) -> float:
        if not self._trained:
            return 1.0

        row = np.asarray(features, dtype=np.float64).ravel()
        if row.shape != self.mean.shape:
            logger.warning(f"Feature size {row.size} does not match model size {self.mean.size}")
            return 0.0

        usable = self.std_dev > MIN_STD_DEV
        z = (row[usable] - self.mean[usable]) / self.std_dev[usable]
        distance = float(np.sum(z * z))
        return float(1.0 - np.exp(-distance / (2.0 * row.size)))

    def save(self, path: str) -> bool:
        """Write the model atomically: a temp file in the same directory is renamed into place."""
        target = Path(path)
        tmp_path = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(dir=target.parent, prefix=f".{target.stem}-",
                                             suffix=".tmp", delete=False) as handle:
                tmp_path = handle.name
                np.savez(
                    handle,
                    trained=np.array(self._trained),
                    mean=self.mean if self.mean is not None else np.empty(0),
                    std_dev=self.std_dev if self.std_dev is not None else np.empty(0),
                )
            os.replace(tmp_path, target)
            return True
        except (OSError, ValueError) as e:
            logger.error(f"Error saving model to {path}: {e}")
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            return False

    def load(self, path: str) -> bool:
        """Load a saved model; unreadable or malformed files leave the model untrained."""
        try:
            with np.load(path, allow_pickle=False) as archive:
                trained = bool(archive["trained"])
                mean = np.asarray(archive["mean"], dtype=np.float64).ravel()
                std_dev = np.asarray(archive["std_dev"], dtype=np.float64).ravel()
        except Exception as e:
            logger.error(f"Error loading model from {path}: {e}")
            self.mean, self.std_dev, self._trained = None, None, False
            return False

        if trained and (mean.size == 0 or mean.shape != std_dev.shape):
            logger.warning(f"Malformed model in {path}, treating as untrained")
            self.mean, self.std_dev, self._trained = None, None, False
            return False

        self.mean = mean if mean.size else None
        self.std_dev = std_dev if std_dev.size else None
        self._trained = trained
        return True


class FeatureExtractor:
    """Encodes observations as feature vectors."""

    def extract(self, result: FrameAnalysisResult) -> FeatureVector:
        person_count = result.count_objects("person")
        unknown_count = result.count_unknown_persons()

        return FeatureVector(
            time_of_day=time_of_day_seconds(result.timestamp_us),
            day_of_week=day_of_week(result.timestamp_us),
            motion_level=result.motion_level,
            person_count=person_count,
            vehicle_count=result.count_objects("vehicle"),
            unknown_person_count=unknown_count,
            additional_features=[unknown_count / max(1, person_count)],
        )


class AnomalyDetector(IAnomalyDetector):
    """
    Per-camera anomaly detector with hourly baselines.

    All model and buffer state is guarded by a single lock so frames from
    several pipelines may call into the same detector.
    """

    def __init__(self, device_id: str, config_service: IConfigService,
                 storage_path: Optional[str] = None):
        """
        Initialize anomaly detector.

        Args:
            device_id: Camera identifier
            config_service: Configuration owner, used for threshold persistence
            storage_path: Root directory for model files, defaults to dataStoragePath
        """
        self.device_id = device_id
        self.config_service = config_service
        config = config_service.get_device_config(device_id)
        self.anomaly_threshold = config.anomaly_threshold
        self.learning_enabled = config.enable_learning

        root = storage_path or config_service.get_global_config().data_storage_path
        self.model_dir = Path(root) / device_id

        self.extractor = FeatureExtractor()
        self.models: Dict[int, GaussianModel] = {hour: GaussianModel() for hour in range(HOURS_PER_DAY)}
        self.baseline_data: Dict[int, deque] = {
            hour: deque(maxlen=MAX_BASELINE_SAMPLES) for hour in range(HOURS_PER_DAY)
        }
        self.samples_seen: Dict[int, int] = {hour: 0 for hour in range(HOURS_PER_DAY)}
        self.recent_history: deque = deque(maxlen=RECENT_HISTORY_SIZE)
        self._lock = threading.RLock()

    def configure(self, config: DeviceConfig) -> None:
        with self._lock:
            self.anomaly_threshold = config.anomaly_threshold
            self.learning_enabled = config.enable_learning

    def model_path(self, hour: int) -> Path:
        return self.model_dir / f"model_hour_{hour}{MODEL_FILE_SUFFIX}"

    def detect_anomaly(self, result: FrameAnalysisResult) -> bool:
        features = self.extractor.extract(result)
        hour = hour_of_day(result.timestamp_us)

        with self._lock:
            model = self.models[hour]
            if not model.is_trained():
                return False
            score = model.score(features.to_array())
            threshold = self.anomaly_threshold

        result.raise_anomaly_score(score)
        if score > threshold:
            if not result.anomaly_type:
                result.anomaly_type, result.anomaly_description = STATISTICAL_ANOMALY
            result.is_anomaly = True
            logger.debug(f"Statistical anomaly on {self.device_id} at hour {hour}: {score:.3f}")
            return True
        return False

    def add_to_baseline(self, result: FrameAnalysisResult) -> None:
        """Accumulate a sample; retrain the hour's model on every full batch."""
        with self._lock:
            if not self.learning_enabled:
                return

            features = self.extractor.extract(result)
            hour = hour_of_day(result.timestamp_us)
            buffer = self.baseline_data[hour]
            buffer.append(features)
            self.samples_seen[hour] += 1
            self.recent_history.append(features)

            if self.samples_seen[hour] % TRAINING_BATCH_SIZE == 0:
                if self.models[hour].train(stack_features(list(buffer))):
                    logger.info(f"Retrained hour {hour} model for {self.device_id} on {len(buffer)} samples")
                    self.save_model()

    def train_hour(self, hour: int, features: List[FeatureVector]) -> bool:
        """Train one hour's model directly from feature vectors."""
        with self._lock:
            return self.models[hour].train(stack_features(features))

    def reset_baseline(self) -> None:
        with self._lock:
            for hour in range(HOURS_PER_DAY):
                self.baseline_data[hour].clear()
                self.samples_seen[hour] = 0
                self.models[hour] = GaussianModel()
            self.recent_history.clear()
        logger.info(f"Baseline reset for {self.device_id}")

    def get_threshold(self) -> float:
        return self.anomaly_threshold

    def set_threshold(self, threshold: float) -> None:
        threshold = min(max(threshold, 0.0), 1.0)
        with self._lock:
            self.anomaly_threshold = threshold
        self.config_service.set_anomaly_threshold(self.device_id, threshold)

    def is_learning_enabled(self) -> bool:
        return self.learning_enabled

    def set_learning_enabled(self, enabled: bool) -> None:
        with self._lock:
            self.learning_enabled = enabled

    def is_trained(self, hour: int) -> bool:
        with self._lock:
            return self.models[hour].is_trained()

    def save_model(self) -> bool:
        """Save every trained model; True only if all of them were written."""
        all_saved = True
        with self._lock:
            for hour, model in self.models.items():
                if model.is_trained() and not model.save(str(self.model_path(hour))):
                    logger.error(f"Failed to save model for hour {hour}")
                    all_saved = False
        return all_saved

    def load_model(self) -> bool:
        """Load any persisted models; True if at least one loaded."""
        any_loaded = False
        with self._lock:
            for hour, model in self.models.items():
                path = self.model_path(hour)
                if not path.exists():
                    continue
                if model.load(str(path)):
                    any_loaded = any_loaded or model.is_trained()
                else:
                    logger.warning(f"Failed to load model for hour {hour}")
        return any_loaded

    def get_recent_features(self, max_items: int = 100) -> List[FeatureVector]:
        with self._lock:
            return list(self.recent_history)[-max_items:]
