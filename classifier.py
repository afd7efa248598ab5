#!/usr/bin/env python3
"""
Model Classifier - assigns a kind to a model filename
Resolution order: local manifest, remote registry, filename heuristics, unknown
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from manifest import ManifestIndex
from registry import ModelTypeRegistry

MODEL_KINDS = (
    'model',
    'lora',
    'control',
    'clip',
    'text',
    'vae',
    'face_restorer',
    'upscaler',
    'embedding',
    'unknown',
)

# Where a kind came from; user-set kinds are never replaced by a scan
KIND_SOURCES = ('user', 'manifest', 'registry', 'heuristic', 'default')

# Ordered filename rules: first keyword match wins
HEURISTIC_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (('lora', 'lycoris'), 'lora'),
    (('control', 't2i'), 'control'),
    (('clip', 'vit', 'vision_model'), 'clip'),
    (('text_encoder', 't5'), 'text'),
    (('vae', 'autoencoder'), 'vae'),
    (('face', 'gfpgan', 'restoreformer'), 'face_restorer'),
    (('upscale', 'esrgan', 'realesrgan'), 'upscaler'),
]


@dataclass(frozen=True)
class ClassificationResult:
    """Kind assigned to a filename and the source that decided it"""
    kind: str
    source: str


def classify_by_filename(filename: str) -> Optional[str]:
    """Apply the heuristic rule table, None when nothing matches"""
    filename_lower = filename.lower()
    for keywords, kind in HEURISTIC_RULES:
        if any(keyword in filename_lower for keyword in keywords):
            return kind
    return None


def should_replace_kind(stored_source: Optional[str], new_source: str) -> bool:
    """Whether a freshly classified kind may replace a stored one

    User-set kinds stay. Manifest and registry answers replace anything else;
    heuristic answers only replace other heuristic or default answers.
    """
    if stored_source == 'user':
        return False
    if new_source in ('user', 'manifest', 'registry'):
        return True
    return stored_source in (None, 'heuristic', 'default')


class ModelClassifier:
    """Pure lookup over the manifest index and registry it was built with"""

    def __init__(self, manifest: Optional[ManifestIndex] = None,
                 registry: Optional[ModelTypeRegistry] = None):
        self.manifest = manifest or ManifestIndex()
        self.registry = registry or ModelTypeRegistry()

    def classify_model(self, filename: str) -> ClassificationResult:
        kind = self.manifest.get_kind(filename)
        if kind in MODEL_KINDS:
            return ClassificationResult(kind, 'manifest')

        kind = self.registry.get_kind(filename)
        if kind in MODEL_KINDS:
            return ClassificationResult(kind, 'registry')

        kind = classify_by_filename(filename)
        if kind:
            return ClassificationResult(kind, 'heuristic')

        return ClassificationResult('unknown', 'default')

    def classify(self, filename: str) -> str:
        """Kind for a filename"""
        return self.classify_model(filename).kind
