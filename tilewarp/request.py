from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from tilecommon.geo import PROJECTIONS
from tilewarp.errors import ParameterValidationError
from tilewarp.fetch import as_template_list, validate_subdomains
from tilewarp.grid import other_projection


def _new_task_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ReprojectRequest:
    """
    One tile request.

    x, y, z address the requested tile in the *target* grid (the grid other than
    `projection`). `projection` is the grid the source tiles are published in.
    """
    x: int
    y: int
    z: int
    url_template: Union[str, List[str]]
    projection: str
    subdomains: List[str] = field(default_factory=list)
    zoom_offset: int = 0
    national_offset: bool = False
    error_log: bool = False
    debug: bool = False
    task_id: str = field(default_factory=_new_task_id)
    timeout: Optional[float] = None
    disable_cache: bool = False
    headers: Dict[str, str] = field(default_factory=dict)
    max_available_zoom: Optional[int] = None
    mask_id: Optional[str] = None

    @property
    def target_projection(self) -> str:
        return other_projection(self.projection)

    @property
    def templates(self) -> List[str]:
        return as_template_list(self.url_template)

    @property
    def source_zoom(self) -> int:
        return self.z + int(self.zoom_offset or 0)

    def validate(self) -> "ReprojectRequest":
        templates = self.templates
        if not templates:
            raise ParameterValidationError("url_template is required")
        if not self.task_id:
            raise ParameterValidationError("task_id is required")
        if self.projection not in PROJECTIONS:
            raise ParameterValidationError(f"unsupported projection: {self.projection!r} (expected one of {PROJECTIONS})")
        for name in ("x", "y", "z"):
            v = getattr(self, name)
            if isinstance(v, bool) or not isinstance(v, int):
                raise ParameterValidationError(f"{name} must be an integer, got {v!r}")
            if v < 0:
                raise ParameterValidationError(f"{name} must be >= 0, got {v}")
        if isinstance(self.zoom_offset, bool) or not isinstance(self.zoom_offset or 0, int):
            raise ParameterValidationError(f"zoom_offset must be an integer, got {self.zoom_offset!r}")
        for t in templates:
            if not validate_subdomains(t, self.subdomains):
                raise ParameterValidationError(f"url template {t!r} uses {{s}} but no subdomains were given")
        if self.timeout is not None and self.timeout < 0:
            raise ParameterValidationError(f"timeout must be >= 0, got {self.timeout}")
        if self.max_available_zoom is not None and self.max_available_zoom < 0:
            raise ParameterValidationError(f"max_available_zoom must be >= 0, got {self.max_available_zoom}")
        return self

    @classmethod
    def from_source(cls, source_cfg: Mapping[str, Any], x: int, y: int, z: int, **overrides: Any) -> "ReprojectRequest":
        """
        Build a request from a `sources.<name>` config entry.
        Keyword overrides win over the entry; None overrides are ignored.
        """
        kwargs: Dict[str, Any] = {
            "url_template": source_cfg.get("url_template"),
            "projection": source_cfg.get("projection"),
            "subdomains": list(source_cfg.get("subdomains") or []),
            "zoom_offset": int(source_cfg.get("zoom_offset", 0) or 0),
            "national_offset": bool(source_cfg.get("national_offset", False)),
            "headers": dict(source_cfg.get("headers") or {}),
            "max_available_zoom": source_cfg.get("max_available_zoom"),
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(x=x, y=y, z=z, **kwargs)
