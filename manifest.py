#!/usr/bin/env python3
"""
Manifest parsing for ckptstash
Reads the image-generation app's custom JSON lists (models, LoRAs, ControlNets)
and builds lookup maps for kind, display name, order, strength and encoders
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from errors import ManifestParseError

MODELS_MANIFEST = 'custom.json'
LORAS_MANIFEST = 'custom_lora.json'
CONTROLNETS_MANIFEST = 'custom_controlnet.json'

DEFAULT_MANIFEST_FILES = [MODELS_MANIFEST, LORAS_MANIFEST, CONTROLNETS_MANIFEST]

# Encoder fields on a main model entry, with the kind each one implies
ENCODER_FIELDS = [
    ('autoencoder', 'vae'),
    ('clip_encoder', 'clip'),
    ('text_encoder', 'text'),
]


def strength_to_fixed(value: float) -> int:
    """Convert a fractional strength to the stored x10 integer, rounding half away from zero"""
    scaled = abs(float(value)) * 10.0
    rounded = int(scaled + 0.5)
    return -rounded if value < 0 else rounded


def strength_from_fixed(value: Optional[int]) -> Optional[float]:
    """Stored x10 integer back to a float"""
    if value is None:
        return None
    return value / 10.0


@dataclass
class ManifestIndex:
    """In-memory index over the parsed manifest files"""
    models: List[Dict[str, Any]] = field(default_factory=list)
    loras: List[Dict[str, Any]] = field(default_factory=list)
    controlnets: List[Dict[str, Any]] = field(default_factory=list)

    file_to_name: Dict[str, str] = field(default_factory=dict)
    file_to_kind: Dict[str, str] = field(default_factory=dict)
    file_to_order: Dict[str, int] = field(default_factory=dict)
    file_to_strength: Dict[str, int] = field(default_factory=dict)
    model_to_encoders: Dict[str, List[str]] = field(default_factory=dict)

    errors: List[str] = field(default_factory=list)

    def get_display_name(self, filename: str) -> Optional[str]:
        return self.file_to_name.get(filename)

    def get_kind(self, filename: str) -> Optional[str]:
        return self.file_to_kind.get(filename)

    def get_display_order(self, filename: str) -> Optional[int]:
        return self.file_to_order.get(filename)

    def get_strength(self, filename: str) -> Optional[int]:
        return self.file_to_strength.get(filename)

    def get_encoders(self, filename: str) -> List[str]:
        return list(self.model_to_encoders.get(filename, []))

    def contains(self, filename: str) -> bool:
        return filename in self.file_to_kind

    def is_empty(self) -> bool:
        return not self.file_to_kind


def load_manifest_file(path: Path) -> List[Dict[str, Any]]:
    """Load one manifest list; a missing file is an empty list"""
    if not path.exists():
        return []
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except UnicodeDecodeError as e:
        raise ManifestParseError(f"Manifest is not valid UTF-8: {path.name}", path) from e
    except json.JSONDecodeError as e:
        raise ManifestParseError(f"Failed to parse {path.name}: {e}", path) from e
    except OSError as e:
        raise ManifestParseError(f"Failed to read {path.name}: {e}", path) from e

    if not isinstance(data, list):
        raise ManifestParseError(f"Expected a JSON list in {path.name}, got {type(data).__name__}", path)

    entries = []
    for entry in data:
        # Entries without a file reference cannot be matched to anything
        if isinstance(entry, dict) and isinstance(entry.get('file'), str) and entry['file']:
            entries.append(entry)
    return entries


def _entry_name(entry: Dict[str, Any]) -> Optional[str]:
    name = entry.get('name')
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None


def _lora_strength(entry: Dict[str, Any]) -> Optional[int]:
    weight = entry.get('weight')
    if isinstance(weight, dict):
        value = weight.get('value')
    else:
        value = weight
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return strength_to_fixed(value)
    return None


def build_index(models: List[Dict[str, Any]],
                loras: List[Dict[str, Any]],
                controlnets: List[Dict[str, Any]]) -> ManifestIndex:
    """Build lookup maps from parsed manifest lists"""
    index = ManifestIndex(models=models, loras=loras, controlnets=controlnets)
    inferred_kinds: Dict[str, str] = {}

    for order, model in enumerate(models):
        filename = model['file']
        name = _entry_name(model)
        if name:
            index.file_to_name[filename] = name
        index.file_to_kind[filename] = 'model'
        index.file_to_order.setdefault(filename, order)

        encoders = []
        for field_name, kind in ENCODER_FIELDS:
            encoder = model.get(field_name)
            if isinstance(encoder, str) and encoder:
                inferred_kinds.setdefault(encoder, kind)
                if encoder not in encoders:
                    encoders.append(encoder)
        if encoders:
            index.model_to_encoders[filename] = encoders

    for order, lora in enumerate(loras):
        filename = lora['file']
        name = _entry_name(lora)
        if name:
            index.file_to_name[filename] = name
        index.file_to_kind[filename] = 'lora'
        index.file_to_order.setdefault(filename, order)
        strength = _lora_strength(lora)
        if strength is not None:
            index.file_to_strength[filename] = strength

    for order, controlnet in enumerate(controlnets):
        filename = controlnet['file']
        name = _entry_name(controlnet)
        if name:
            index.file_to_name[filename] = name
        index.file_to_kind[filename] = 'control'
        index.file_to_order.setdefault(filename, order)

    # Encoder kinds only apply to files without an explicit entry of their own
    for filename, kind in inferred_kinds.items():
        index.file_to_kind.setdefault(filename, kind)

    return index


def parse_from_directory(models_dir: Path,
                         manifest_files: Optional[List[str]] = None) -> ManifestIndex:
    """Parse all manifest files found in models_dir

    A malformed file is recorded in ``errors`` and treated as empty; it never
    prevents the other files from loading.
    """
    models_dir = Path(models_dir)
    manifest_files = manifest_files or DEFAULT_MANIFEST_FILES

    lists: Dict[str, List[Dict[str, Any]]] = {}
    errors = []
    for filename in manifest_files:
        try:
            lists[filename] = load_manifest_file(models_dir / filename)
        except ManifestParseError as e:
            errors.append(str(e))
            lists[filename] = []

    index = build_index(
        lists.get(MODELS_MANIFEST, []),
        lists.get(LORAS_MANIFEST, []),
        lists.get(CONTROLNETS_MANIFEST, []),
    )
    index.errors = errors
    return index


def candidate_edges(index: ManifestIndex) -> List[Tuple[str, str]]:
    """All (parent, encoder) pairs named by the manifest, in manifest order"""
    edges = []
    for parent, encoders in index.model_to_encoders.items():
        for child in encoders:
            if child != parent:
                edges.append((parent, child))
    return edges
