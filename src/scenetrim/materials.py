"""Material variants and texture references.

Materials are a tagged union over two variants: :class:`StandardMaterial`
(``kind == "standard"``, unlit/Blinn-Phong style colour channels) and
:class:`PBRMaterial` (``kind == "pbr"``, metallic/roughness).  Code that needs to
branch on the variant dispatches on ``material.kind`` and must treat any other
tag as an error (see :func:`require_kind`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, Iterator, Literal, Optional, Tuple, Union

LOG = logging.getLogger(__name__)

Color3 = Tuple[float, float, float]
MaterialKind = Literal["standard", "pbr"]

MATERIAL_KINDS: Tuple[str, ...] = ("standard", "pbr")

# Texture slot order matters: similarity compares slots pairwise in this order.
STANDARD_TEXTURE_SLOTS: Tuple[str, ...] = ("diffuse", "bump", "specular", "emissive")
PBR_TEXTURE_SLOTS: Tuple[str, ...] = ("albedo", "bump", "metallic", "microsurface", "ambient")

# Class labels reported by statistics, one per variant tag.
VARIANT_LABELS: Dict[str, str] = {"standard": "StandardMaterial", "pbr": "PBRMaterial"}


def _color(value: Optional[Any]) -> Optional[Color3]:
    if value is None:
        return None
    r, g, b = (float(c) for c in value)
    return (r, g, b)


@dataclass(eq=False)
class Texture:
    """A texture bound by one or more materials.

    ``id`` is the stable identity; ``url`` is the optional source location used
    when textures are compared by source.
    """

    id: str = ""
    name: Optional[str] = None
    url: Optional[str] = None
    width: int = 0
    height: int = 0
    kind: str = "Texture"

    @property
    def format(self) -> str:
        if not self.url:
            return "unknown"
        path = self.url.split("?", 1)[0].split("#", 1)[0]
        suffix = PurePosixPath(path).suffix.lower().lstrip(".")
        return suffix or "unknown"

    @property
    def byte_estimate(self) -> int:
        # RGBA, one byte per channel
        return int(self.width) * int(self.height) * 4

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "width": self.width,
            "height": self.height,
            "kind": self.kind,
        }


@dataclass(eq=False)
class StandardMaterial:
    name: str = "Material"
    diffuse_color: Optional[Color3] = (1.0, 1.0, 1.0)
    specular_color: Optional[Color3] = (1.0, 1.0, 1.0)
    emissive_color: Optional[Color3] = (0.0, 0.0, 0.0)
    alpha: float = 1.0
    textures: Dict[str, Texture] = field(default_factory=dict)
    id: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    disposed: bool = field(default=False, init=False, repr=False)

    kind: MaterialKind = field(default="standard", init=False)

    def __post_init__(self) -> None:
        self.diffuse_color = _color(self.diffuse_color)
        self.specular_color = _color(self.specular_color)
        self.emissive_color = _color(self.emissive_color)
        self.alpha = float(self.alpha)
        _check_slots(self.kind, self.textures)


@dataclass(eq=False)
class PBRMaterial:
    name: str = "Material"
    albedo_color: Optional[Color3] = (1.0, 1.0, 1.0)
    metallic: float = 0.0
    roughness: float = 1.0
    alpha: float = 1.0
    textures: Dict[str, Texture] = field(default_factory=dict)
    id: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    disposed: bool = field(default=False, init=False, repr=False)

    kind: MaterialKind = field(default="pbr", init=False)

    def __post_init__(self) -> None:
        self.albedo_color = _color(self.albedo_color)
        self.metallic = float(self.metallic or 0.0)
        self.roughness = float(self.roughness or 0.0)
        self.alpha = float(self.alpha)
        _check_slots(self.kind, self.textures)


Material = Union[StandardMaterial, PBRMaterial]


def require_kind(material: Material) -> str:
    kind = getattr(material, "kind", None)
    if kind not in MATERIAL_KINDS:
        raise TypeError(f"Unsupported material variant: {kind!r}")
    return kind


def texture_slots(kind: str) -> Tuple[str, ...]:
    if kind == "standard":
        return STANDARD_TEXTURE_SLOTS
    if kind == "pbr":
        return PBR_TEXTURE_SLOTS
    raise TypeError(f"Unsupported material variant: {kind!r}")


def _check_slots(kind: str, textures: Dict[str, Texture]) -> None:
    allowed = texture_slots(kind)
    unknown = sorted(set(textures) - set(allowed))
    if unknown:
        raise ValueError(f"Unknown texture slot(s) for {kind} material: {', '.join(unknown)}")


def iter_textures(material: Material) -> Iterator[Tuple[str, Optional[Texture]]]:
    """Yield ``(slot, texture_or_None)`` for every slot of the material's variant."""
    for slot in texture_slots(require_kind(material)):
        yield slot, material.textures.get(slot)


def bound_textures(material: Material) -> list[Texture]:
    return [tex for _, tex in iter_textures(material) if tex is not None]


def clone_material(material: Material, *, name: Optional[str] = None) -> Material:
    """Copy colour/scalar channels into a new, unregistered material.

    Texture references are shared, not copied.
    """
    kind = require_kind(material)
    new_name = name if name is not None else material.name
    if kind == "standard":
        return StandardMaterial(
            name=new_name,
            diffuse_color=material.diffuse_color,
            specular_color=material.specular_color,
            emissive_color=material.emissive_color,
            alpha=material.alpha,
            textures=dict(material.textures),
        )
    return PBRMaterial(
        name=new_name,
        albedo_color=material.albedo_color,
        metallic=material.metallic,
        roughness=material.roughness,
        alpha=material.alpha,
        textures=dict(material.textures),
    )


def material_as_dict(material: Material) -> Dict[str, Any]:
    kind = require_kind(material)
    data: Dict[str, Any] = {
        "id": material.id,
        "name": material.name,
        "kind": kind,
        "alpha": material.alpha,
        "textures": {slot: tex.id for slot, tex in material.textures.items()},
    }
    if kind == "standard":
        data.update(
            diffuse_color=_list_or_none(material.diffuse_color),
            specular_color=_list_or_none(material.specular_color),
            emissive_color=_list_or_none(material.emissive_color),
        )
    else:
        data.update(
            albedo_color=_list_or_none(material.albedo_color),
            metallic=material.metallic,
            roughness=material.roughness,
        )
    if material.metadata:
        data["metadata"] = dict(material.metadata)
    return data


def _list_or_none(value: Optional[Color3]) -> Optional[list[float]]:
    return None if value is None else list(value)


__all__ = [
    "Color3",
    "MaterialKind",
    "MATERIAL_KINDS",
    "STANDARD_TEXTURE_SLOTS",
    "PBR_TEXTURE_SLOTS",
    "VARIANT_LABELS",
    "Texture",
    "StandardMaterial",
    "PBRMaterial",
    "Material",
    "require_kind",
    "texture_slots",
    "iter_textures",
    "bound_textures",
    "clone_material",
    "material_as_dict",
]
