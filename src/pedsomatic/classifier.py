"""Somatic-mutation classifier, probability gate and calibrators.

The classifier is a pre-trained estimator saved with joblib next to a
``config.json`` describing how to turn evidence into a feature vector::

    models/somatic/
        bestModel.joblib           # anything with predict_proba(X) -> (n, 2)
        config.json                # {"mapper": "pedsomatic.classifier:PairCountsMapper"}
        bestCalibration.json       # optional, needed for --include-bayes / --include-fdr

The rest of the package only sees the narrow :class:`MutationClassifier`
interface (evidence + two sample indices -> probability pair), so tests can
substitute a deterministic stub.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Protocol, Sequence, Tuple

import joblib
import numpy as np

from .candidates import CandidateMatrix
from .models import PositionEvidence, Prediction, SampleEvidence
from .pedigree import PedigreeIndex
from .utils import clamp, logit, read_json, sigmoid
from .validation import expand_model_path

logger = logging.getLogger(__name__)

MODEL_SUFFIX = "Model.joblib"
CONFIG_NAME = "config.json"
CALIBRATION_SUFFIX = "Calibration.json"

DEFAULT_BAYES_PRIOR = 2.5e-7


class ModelLoadError(RuntimeError):
    """Raised when the classifier, its feature mapper or a calibrator cannot be set up."""


class ClassifierGapError(RuntimeError):
    """Raised when the classifier cannot score a (somatic, germline) pair."""


class MutationClassifier(Protocol):
    def predict(
        self,
        samples: Sequence[SampleEvidence],
        reference_index: int,
        position: int,
        evidence: PositionEvidence,
        germline_index: int,
        somatic_index: int,
    ) -> Prediction:
        ...


class FeatureMapper(Protocol):
    def map(
        self,
        samples: Sequence[SampleEvidence],
        reference_index: int,
        position: int,
        evidence: PositionEvidence,
        germline_index: int,
        somatic_index: int,
    ) -> np.ndarray:
        ...


class Calibrator(Protocol):
    def calibrate(self, prediction: Prediction) -> float:
        ...


class PairCountsMapper:
    """Features contrasting a somatic sample with one germline sample.

    Genotype slots are sorted by decreasing somatic count (ties by germline count)
    and the first ``max_slots`` contribute six values each: somatic count,
    germline count, somatic frequency, germline frequency, indel flag and reference
    flag. Coverage and failed-base counts of both samples close the vector.
    """

    FEATURES_PER_SLOT = 6

    def __init__(self, max_slots: int = 10) -> None:
        self.max_slots = int(max_slots)

    @property
    def num_features(self) -> int:
        return self.max_slots * self.FEATURES_PER_SLOT + 4

    def map(
        self,
        samples: Sequence[SampleEvidence],
        reference_index: int,
        position: int,
        evidence: PositionEvidence,
        germline_index: int,
        somatic_index: int,
    ) -> np.ndarray:
        somatic = samples[somatic_index]
        germline = samples[germline_index]
        n = max(somatic.num_slots, germline.num_slots)
        order = sorted(range(n), key=lambda i: (-somatic.count(i), -germline.count(i), i))[: self.max_slots]

        out = np.zeros(self.num_features, dtype=np.float32)
        for j, slot in enumerate(order):
            proto = somatic.slots[slot] if slot < somatic.num_slots else germline.slots[slot]
            base = j * self.FEATURES_PER_SLOT
            out[base : base + self.FEATURES_PER_SLOT] = (
                somatic.count(slot),
                germline.count(slot),
                somatic.frequency(slot),
                germline.frequency(slot),
                float(proto.is_indel),
                float(proto.is_reference),
            )
        tail = self.max_slots * self.FEATURES_PER_SLOT
        out[tail : tail + 4] = (somatic.coverage, germline.coverage, somatic.failed_count, germline.failed_count)
        return out


class SomaticModel:
    """A joblib estimator paired with its feature mapper."""

    def __init__(self, estimator: Any, mapper: FeatureMapper, *, model_dir: Path, prefix: str) -> None:
        self.estimator = estimator
        self.mapper = mapper
        self.model_dir = model_dir
        self.prefix = prefix

    def predict(
        self,
        samples: Sequence[SampleEvidence],
        reference_index: int,
        position: int,
        evidence: PositionEvidence,
        germline_index: int,
        somatic_index: int,
    ) -> Prediction:
        features = self.mapper.map(samples, reference_index, position, evidence, germline_index, somatic_index)
        if not np.all(np.isfinite(features)):
            raise ClassifierGapError("feature vector contains non-finite values")
        proba = np.asarray(self.estimator.predict_proba(features.reshape(1, -1)), dtype=np.float64)
        if proba.shape != (1, 2) or not np.all(np.isfinite(proba)):
            raise ClassifierGapError(f"estimator returned unusable probabilities with shape {proba.shape}")
        return Prediction(p_mutated=float(proba[0, 1]), p_not_mutated=float(proba[0, 0]))


def _split_model_path(path: Path) -> Tuple[Path, str]:
    name = path.name
    if not name.endswith(MODEL_SUFFIX):
        raise ModelLoadError(f"Model file name must end with '{MODEL_SUFFIX}' (e.g. best{MODEL_SUFFIX}): {path}")
    return path.parent, name[: -len(MODEL_SUFFIX)]


def _load_mapper(config: Mapping[str, Any]) -> FeatureMapper:
    mapper_ref = config.get("mapper")
    if not isinstance(mapper_ref, str) or ":" not in mapper_ref:
        raise ModelLoadError("config.json must define 'mapper' as 'module:Class'")
    module_name, class_name = mapper_ref.split(":", 1)
    try:
        cls = getattr(importlib.import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise ModelLoadError(f"Unable to load feature mapper '{mapper_ref}': {e}") from e
    kwargs = config.get("mapper_args", {}) or {}
    try:
        mapper = cls(**kwargs)
    except (TypeError, ValueError) as e:
        raise ModelLoadError(f"Unable to build feature mapper '{mapper_ref}' from mapper_args {kwargs}: {e}") from e
    logger.info("Loaded feature mapper: %s", mapper_ref)
    return mapper


def load_classifier(model_path: str | Path) -> SomaticModel:
    """Load the estimator and its feature mapper; raise ModelLoadError on any failure."""
    try:
        path = expand_model_path(str(model_path))
    except FileNotFoundError as e:
        raise ModelLoadError(str(e)) from e
    model_dir, prefix = _split_model_path(path)

    if not path.exists():
        raise ModelLoadError(f"Model not found: {path}")
    config_path = model_dir / CONFIG_NAME
    if not config_path.exists():
        raise ModelLoadError(f"Feature-mapping configuration not found: {config_path}")

    try:
        config = read_json(config_path)
    except ValueError as e:
        raise ModelLoadError(f"Cannot parse {config_path}: {e}") from e
    mapper = _load_mapper(config)

    try:
        estimator = joblib.load(path)
    except Exception as e:
        raise ModelLoadError(f"Unable to load model {path}: {e}") from e
    if not hasattr(estimator, "predict_proba"):
        raise ModelLoadError(f"Model {path} does not provide predict_proba()")

    logger.info("Model at %s loaded (prefix=%s)", model_dir, prefix)
    return SomaticModel(estimator, mapper, model_dir=model_dir, prefix=prefix)


def _load_calibration(model: SomaticModel) -> Dict[str, Any]:
    path = model.model_dir / f"{model.prefix}{CALIBRATION_SUFFIX}"
    if not path.exists():
        raise ModelLoadError(f"Calibration data not found: {path}")
    try:
        return read_json(path)
    except ValueError as e:
        raise ModelLoadError(f"Cannot parse {path}: {e}") from e


class BayesCalibrator:
    """Posterior probability of mutation using a prior mutation rate.

    The model was trained with ``train_positive_rate`` positives; its odds are
    rescaled to the expected rate of somatic mutation at a site.
    """

    def __init__(self, train_positive_rate: float, prior: float = DEFAULT_BAYES_PRIOR) -> None:
        if not 0.0 < train_positive_rate < 1.0:
            raise ModelLoadError("train_positive_rate must be in (0, 1)")
        if not 0.0 < prior < 1.0:
            raise ModelLoadError("bayes prior must be in (0, 1)")
        self.train_positive_rate = float(train_positive_rate)
        self.prior = float(prior)

    def calibrate(self, prediction: Prediction) -> float:
        p = clamp(prediction.p_mutated, 1e-12, 1 - 1e-12)
        return sigmoid(logit(p) + logit(self.prior) - logit(self.train_positive_rate))


class FDREstimator:
    """Estimated false discovery rate if the threshold were placed at a record's probability."""

    def __init__(self, positive_scores: Sequence[float], negative_scores: Sequence[float]) -> None:
        self.positive = np.sort(np.asarray(positive_scores, dtype=np.float64))
        self.negative = np.sort(np.asarray(negative_scores, dtype=np.float64))
        if self.positive.size == 0 or self.negative.size == 0:
            raise ModelLoadError("FDR estimation needs both positive and negative validation scores")

    def calibrate(self, prediction: Prediction) -> float:
        t = prediction.p_mutated
        false_pos = self.negative.size - int(np.searchsorted(self.negative, t, side="left"))
        true_pos = self.positive.size - int(np.searchsorted(self.positive, t, side="left"))
        called = false_pos + true_pos
        if called == 0:
            return 0.0
        return false_pos / float(called)


def load_bayes_calibrator(model: SomaticModel, prior: float = DEFAULT_BAYES_PRIOR) -> BayesCalibrator:
    data = _load_calibration(model)
    if "train_positive_rate" not in data:
        raise ModelLoadError("Calibration data lacks 'train_positive_rate' needed by the Bayes calibrator")
    return BayesCalibrator(float(data["train_positive_rate"]), prior)


def load_fdr_estimator(model: SomaticModel) -> FDREstimator:
    data = _load_calibration(model)
    scores = data.get("validation_scores") or {}
    return FDREstimator(scores.get("positive", []), scores.get("negative", []))


@dataclass
class GateResult:
    """Predictions gathered at one position.

    ``reported`` holds, per somatic sample, the prediction with the lowest
    probability of mutation among its germline relatives.
    """

    reported: Dict[int, Prediction] = field(default_factory=dict)
    pairs: Dict[Tuple[int, int], Prediction] = field(default_factory=dict)
    vetoed: Tuple[int, ...] = ()
    unscored: Tuple[int, ...] = ()
    gaps: int = 0


class ProbabilityGate:
    """Clear the candidates of somatic samples the classifier does not believe in."""

    def __init__(
        self,
        classifier: Optional[MutationClassifier],
        pedigree: PedigreeIndex,
        threshold: float = 0.99,
    ) -> None:
        if classifier is None:
            raise ModelLoadError("A somatic classifier must be loaded before positions are processed.")
        self.classifier = classifier
        self.pedigree = pedigree
        self.threshold = float(threshold)

    def apply(self, position: PositionEvidence, matrix: CandidateMatrix) -> GateResult:
        result = GateResult()
        vetoed = []
        unscored = []
        for link in self.pedigree.links:
            for germline_index in link.germline_indices:
                try:
                    prediction = self.classifier.predict(
                        position.samples,
                        position.reference_index,
                        position.pos0,
                        position,
                        germline_index,
                        link.somatic_index,
                    )
                except ClassifierGapError as e:
                    result.gaps += 1
                    logger.warning(
                        "Cannot score %s vs %s at %s:%d: %s",
                        self.pedigree.samples[link.somatic_index],
                        self.pedigree.samples[germline_index],
                        position.chrom,
                        position.pos0 + 1,
                        e,
                    )
                    continue
                result.pairs[(link.somatic_index, germline_index)] = prediction
                current = result.reported.get(link.somatic_index)
                if current is None or prediction.p_mutated < current.p_mutated:
                    result.reported[link.somatic_index] = prediction
                # do not keep candidates the model predicts are not somatic
                if prediction.p_mutated < self.threshold:
                    matrix.clear_sample(link.somatic_index)
                    if link.somatic_index not in vetoed:
                        vetoed.append(link.somatic_index)
            # a sample none of whose pairs could be scored never passed the gate
            if link.germline_indices and link.somatic_index not in result.reported:
                matrix.clear_sample(link.somatic_index)
                unscored.append(link.somatic_index)
                logger.warning(
                    "No germline pair of %s could be scored at %s:%d; dropping its candidates",
                    self.pedigree.samples[link.somatic_index],
                    position.chrom,
                    position.pos0 + 1,
                )
        result.vetoed = tuple(vetoed)
        result.unscored = tuple(unscored)
        return result


def calibrate_position(gate_result: GateResult, calibrator: Calibrator) -> Dict[int, float]:
    return {idx: calibrator.calibrate(pred) for idx, pred in gate_result.reported.items()}
