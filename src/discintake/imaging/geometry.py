"""Crop, rotate and cover geometry.

Pure integer/float math with no image dependency. Both the full-resolution
transform and the live preview build a :class:`RenderPlan` here, so the
preview is always the final output at a different scale.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from discintake.models import EditSpec

ASPECT_RATIO: float = 4 / 3


def round_half_away(value: float) -> int:
    """Round to the nearest integer, ties away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


@dataclass(frozen=True)
class CropBox:
    """Crop rectangle in source pixel coordinates."""

    left: int
    top: int
    width: int
    height: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        return (self.left, self.top, self.left + self.width, self.top + self.height)


@dataclass(frozen=True)
class RenderPlan:
    """Everything needed to turn a decoded source into an output image.

    ``cover`` is the region of the rotated crop, in rotated-crop pixel
    coordinates, that is resampled to fill ``size``.
    """

    crop: CropBox
    rotation: int
    size: tuple[int, int]
    cover: tuple[float, float, float, float]


def compute_crop(width: int, height: int, spec: EditSpec, aspect: float = ASPECT_RATIO) -> CropBox:
    """Compute the fixed-aspect crop rectangle for ``spec``.

    The rectangle never leaves the source bounds, whatever the zoom and pan.
    """
    if width < 1 or height < 1:
        raise ValueError(f"source dimensions must be positive, got {width}x{height}")

    crop_w = width
    crop_h = round_half_away(width / aspect)
    if crop_h > height:
        crop_h = height
        crop_w = round_half_away(height * aspect)
    crop_w = min(width, crop_w)
    crop_h = min(height, crop_h)

    zoom = max(1.0, spec.zoom)
    crop_w = max(1, round_half_away(crop_w / zoom))
    crop_h = max(1, round_half_away(crop_h / zoom))

    center_x = math.floor(spec.pan_x * width)
    center_y = math.floor(spec.pan_y * height)
    left = max(0, min(center_x - crop_w // 2, width - crop_w))
    top = max(0, min(center_y - crop_h // 2, height - crop_h))
    return CropBox(left=left, top=top, width=crop_w, height=crop_h)


def rotated_size(width: int, height: int, rotation: int) -> tuple[int, int]:
    if rotation % 180 != 0:
        return height, width
    return width, height


def target_size(crop_w: int, crop_h: int, rotation: int, max_edge: int) -> tuple[int, int]:
    """Output dimensions for a crop: longest edge capped, never upscaled."""
    rot_w, rot_h = rotated_size(crop_w, crop_h, rotation)
    longest = max(rot_w, rot_h)
    scale = max_edge / longest if longest > max_edge else 1.0
    return max(1, round_half_away(rot_w * scale)), max(1, round_half_away(rot_h * scale))


def cover_box(src_w: int, src_h: int, out_w: int, out_h: int) -> tuple[float, float, float, float]:
    """Centered region of a ``src_w``x``src_h`` image that covers ``out_w``x``out_h``.

    Scaling the region to the output size fills it completely while
    preserving aspect ratio; whatever lies outside the region is cropped.
    """
    scale = max(out_w / src_w, out_h / src_h)
    visible_w = out_w / scale
    visible_h = out_h / scale
    left = (src_w - visible_w) / 2
    top = (src_h - visible_h) / 2
    return (left, top, left + visible_w, top + visible_h)


def plan_transform(width: int, height: int, spec: EditSpec, max_edge: int) -> RenderPlan:
    crop = compute_crop(width, height, spec)
    size = target_size(crop.width, crop.height, spec.rotation, max_edge)
    rot_w, rot_h = rotated_size(crop.width, crop.height, spec.rotation)
    return RenderPlan(crop=crop, rotation=spec.rotation, size=size, cover=cover_box(rot_w, rot_h, *size))


def plan_preview(
    width: int,
    height: int,
    spec: EditSpec,
    surface: tuple[int, int],
    max_edge: int,
) -> RenderPlan:
    """Plan for the live preview of what :func:`plan_transform` will produce.

    The surface is oriented like the output (portrait surfaces for quarter
    turns) and the final output is fitted into it, up or down, so the
    preview shows exactly the final framing.
    """
    final = plan_transform(width, height, spec, max_edge)
    out_w, out_h = final.size
    surface_w, surface_h = surface
    if (out_w >= out_h) != (surface_w >= surface_h):
        surface_w, surface_h = surface_h, surface_w
    scale = min(surface_w / out_w, surface_h / out_h)
    size = (max(1, round_half_away(out_w * scale)), max(1, round_half_away(out_h * scale)))
    return RenderPlan(crop=final.crop, rotation=final.rotation, size=size, cover=final.cover)


def scale_plan(plan: RenderPlan, factor: int, bounds: tuple[int, int]) -> RenderPlan:
    """Re-express ``plan`` for a copy of the source reduced by ``factor``.

    ``bounds`` is the size of the reduced copy. The crop becomes the
    smallest whole-pixel box around the exact scaled crop, and the cover
    region is shifted into it, so the rendered frame matches the full
    resolution plan at 1/``factor`` of the cost.
    """
    if factor <= 1:
        return plan
    bound_w, bound_h = bounds
    left, top, right, bottom = (edge / factor for edge in plan.crop.box)
    box_left, box_top = math.floor(left), math.floor(top)
    box_right = min(bound_w, max(box_left + 1, math.ceil(right)))
    box_bottom = min(bound_h, max(box_top + 1, math.ceil(bottom)))
    region_w, region_h = box_right - box_left, box_bottom - box_top

    # Exact crop inside the whole-pixel region, then turned clockwise with it.
    x0, y0, x1, y1 = left - box_left, top - box_top, right - box_left, bottom - box_top
    if plan.rotation == 90:
        x0, y0, x1, y1 = region_h - y1, x0, region_h - y0, x1
    elif plan.rotation == 180:
        x0, y0, x1, y1 = region_w - x1, region_h - y1, region_w - x0, region_h - y0
    elif plan.rotation == 270:
        x0, y0, x1, y1 = y0, region_w - x1, y1, region_w - x0

    rot_w, rot_h = rotated_size(region_w, region_h, plan.rotation)
    c_left, c_top, c_right, c_bottom = plan.cover
    cover = (
        max(0.0, x0 + c_left / factor),
        max(0.0, y0 + c_top / factor),
        min(float(rot_w), x0 + c_right / factor),
        min(float(rot_h), y0 + c_bottom / factor),
    )
    crop = CropBox(left=box_left, top=box_top, width=region_w, height=region_h)
    return RenderPlan(crop=crop, rotation=plan.rotation, size=plan.size, cover=cover)
