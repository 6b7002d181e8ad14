"""
Main-side post-processing of worker detections.

The worker reports every box the model produced; threshold, class allow-list
and label overrides are applied here so they can change at runtime without
respawning the worker.
"""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence

from camstream_mqtt.schemas import Classification, Detection


def apply_label_map(detections: Iterable[Detection], label_map: Dict[int, str]) -> List[Detection]:
    """Replace class names for ids present in label_map."""
    if not label_map:
        return list(detections)
    return [
        replace(d, class_name=label_map[d.class_id]) if d.class_id in label_map else d
        for d in detections
    ]


def filter_detections(
    detections: Iterable[Detection],
    score_threshold: float,
    class_filter: Sequence[int] = (),
) -> List[Detection]:
    """
    Keep detections with confidence >= score_threshold whose class id is in
    class_filter. An empty class_filter allows every class.
    """
    allowed = set(class_filter)
    return [
        d for d in detections
        if d.confidence >= score_threshold and (not allowed or d.class_id in allowed)
    ]


def top_confidence(detections: Iterable[Detection]) -> float:
    return max((d.confidence for d in detections), default=0.0)


def prompt_score(classifications: Iterable[Classification], prompt: Optional[str]) -> float:
    """Score of the entry matching prompt, 0 when absent."""
    for classification in classifications:
        if classification.label == prompt:
            return classification.score
    return 0.0
