"""Single-field value transformations used by field mapping."""

from rating_orchestrator.transforms.executor import TRANSFORMS, TransformResult, apply_transform

__all__ = ["TRANSFORMS", "TransformResult", "apply_transform"]
