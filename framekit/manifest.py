# -*- coding: utf-8 -*-
import os
import re
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from framekit.config import Config
from framekit.errors import InputValidationError

logger = logging.getLogger(__name__)

_EXTENSION_RE = re.compile(r'\.[^/.]+$')


@dataclass(frozen=True)
class CropRequest:
    file_name: str
    y: float


@dataclass
class Manifest:
    images: List[CropRequest] = field(default_factory=list)
    job_id: Optional[str] = None

    @property
    def file_names(self) -> List[str]:
        return [request.file_name for request in self.images]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_manifest(payload: Union[str, bytes, Mapping[str, Any]], config: Optional[Config] = None) -> Manifest:
    """
    Parses `{jobId?: str, images: [{fileName: str, y: number}]}` from JSON text
    or an already decoded mapping. Raises InputValidationError on any problem.
    """
    config = config or Config()

    if isinstance(payload, (str, bytes, bytearray)):
        try:
            payload = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InputValidationError(f"invalid manifest JSON: {e}") from e
    if not isinstance(payload, Mapping):
        raise InputValidationError("manifest must be a JSON object")

    job_id = payload.get('jobId')
    if job_id is not None and not isinstance(job_id, str):
        raise InputValidationError("manifest.jobId must be a string")
    if job_id is not None and not job_id.strip():
        job_id = None

    images = payload.get('images')
    if not isinstance(images, list) or not images:
        raise InputValidationError("manifest.images must be a non-empty array")
    if len(images) > config.max_sources:
        raise InputValidationError(f"manifest has {len(images)} images; at most {config.max_sources} are allowed")

    requests: List[CropRequest] = []
    seen = set()
    for index, entry in enumerate(images):
        if not isinstance(entry, Mapping):
            raise InputValidationError(f"invalid manifest entry at index {index}")
        file_name = entry.get('fileName')
        y = entry.get('y')
        if not isinstance(file_name, str) or not file_name or not _is_number(y):
            raise InputValidationError(f"invalid manifest entry at index {index}")
        if y != y or y in (float('inf'), float('-inf')):
            raise InputValidationError(f"invalid offset for {file_name}", file_name=file_name)
        if file_name in seen:
            raise InputValidationError(f"duplicate fileName {file_name}", file_name=file_name)
        seen.add(file_name)
        requests.append(CropRequest(file_name=file_name, y=y))

    return Manifest(images=requests, job_id=job_id)


def validate_sources(manifest: Manifest, sources: Mapping[str, bytes], config: Optional[Config] = None):
    """Every request must match exactly one uploaded source within the size limit."""
    config = config or Config()
    if len(sources) > config.max_sources:
        raise InputValidationError(f"{len(sources)} files uploaded; at most {config.max_sources} are allowed")
    for request in manifest.images:
        data = sources.get(request.file_name)
        if data is None:
            raise InputValidationError(f"missing file for {request.file_name}", file_name=request.file_name)
        if len(data) > config.max_source_bytes:
            raise InputValidationError(
                f"{request.file_name} is {len(data)} bytes; the limit is {config.max_source_bytes}",
                file_name=request.file_name,
            )


def output_name(file_name: str, config: Optional[Config] = None) -> str:
    config = config or Config()
    base = _EXTENSION_RE.sub('', os.path.basename(file_name.replace('\\', '/')))
    return f"{base}_{config.target_width}x{config.target_height}{config.output_ext}"


def assign_output_names(file_names: List[str], config: Optional[Config] = None) -> Dict[str, str]:
    """Maps each source name to a unique entry name; collisions get _2, _3, ... before the extension."""
    assigned: Dict[str, str] = {}
    used = set()
    for file_name in file_names:
        name = output_name(file_name, config)
        if name in used:
            stem, ext = os.path.splitext(name)
            counter = 2
            while f"{stem}_{counter}{ext}" in used:
                counter += 1
            logger.info(f"  -> Info: {file_name}: Output name '{name}' already used. Using '{stem}_{counter}{ext}'.")
            name = f"{stem}_{counter}{ext}"
        used.add(name)
        assigned[file_name] = name
    return assigned
