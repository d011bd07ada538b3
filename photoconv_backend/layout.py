from __future__ import annotations

from dataclasses import dataclass

from .config import PDF_FIT_RATIO, PDF_PAGE_SIZE


@dataclass(frozen=True)
class PagePlacement:
    x: float
    y: float
    width: float
    height: float
    scale: float


def fit_on_page(
    image_width: int,
    image_height: int,
    page_size: tuple[float, float] = PDF_PAGE_SIZE,
    fit_ratio: float = PDF_FIT_RATIO,
) -> PagePlacement:
    """Scale an image uniformly to fit_ratio of the page and center it.

    Rules:
    - scale = min(page_w / img_w, page_h / img_h) * fit_ratio, so aspect ratio is kept
      and the image fits in both dimensions.
    - x and y are the offsets that center the scaled image.

    Raises ValueError for images without a positive size.
    """
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"Invalid image size {image_width}x{image_height}")

    page_width, page_height = page_size
    scale = min(page_width / image_width, page_height / image_height) * fit_ratio
    scaled_width = image_width * scale
    scaled_height = image_height * scale
    return PagePlacement(
        x=(page_width - scaled_width) / 2,
        y=(page_height - scaled_height) / 2,
        width=scaled_width,
        height=scaled_height,
        scale=scale,
    )
