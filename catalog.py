"""
Catalog of wheel and paint options, and the instructions sent to the
generative image-edit model for each.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from errors import UnknownSelectionError


@dataclass(frozen=True)
class WheelOption:
    wheel_id: str
    reference_image: str  # path under ASSET_BASE_URL
    description: str


@dataclass(frozen=True)
class PaintOption:
    paint_id: str
    name: str
    description: str


WHEEL_CATALOG: Dict[str, WheelOption] = {
    option.wheel_id: option
    for option in [
        WheelOption("20-sputtering", "/wheels/20-sputtering.png",
                    "20-inch sputtering finish multi-spoke alloy wheels"),
        WheelOption("19-hyper-silver", "/wheels/19-hyper-silver.png",
                    "19-inch hyper silver split-spoke alloy wheels"),
        WheelOption("19-diamond-cut", "/wheels/19-diamond.png",
                    "19-inch diamond-cut dual-tone alloy wheels"),
        WheelOption("18-diamond-cut", "/wheels/18-diamond.png",
                    "18-inch diamond-cut alloy wheels with machined finish"),
    ]
}

# Prompts for the inpainting model, which sees only the masked wheels and no reference photo
WHEEL_INPAINT_PROMPTS: Dict[str, str] = {
    "20-sputtering": "20-inch dark gunmetal alloy wheel with 5 split-spoke design, modern angular cuts, "
                     "premium metallic finish, photorealistic car wheel",
    "19-hyper-silver": "19-inch two-tone alloy wheel with 5 split-spoke design, black base with machined "
                       "silver face, sharp angular spokes, photorealistic car wheel",
    "19-diamond-cut": "19-inch chrome mesh wheel with intricate lattice web pattern, complex geometric spoke "
                      "design, diamond-cut silver chrome finish, photorealistic car wheel",
    "18-diamond-cut": "18-inch silver alloy wheel with multi-spoke star pattern, 10+ spokes radiating from "
                      "center, diamond-cut machined finish, photorealistic car wheel",
}

PAINT_CATALOG: Dict[str, PaintOption] = {
    option.paint_id: option
    for option in [
        PaintOption("vik-black", "Vik Black",
                    "deep black metallic car paint, glossy black finish, professional automotive paint"),
        PaintOption("himalayan-gray", "Himalayan Gray",
                    "dark gray metallic car paint, charcoal gray automotive finish, professional paint job"),
        PaintOption("adriatic-blue", "Adriatic Blue",
                    "deep navy blue metallic car paint, dark blue automotive finish, professional paint job"),
        PaintOption("cardiff-green", "Cardiff Green",
                    "dark forest green metallic car paint, deep green automotive finish, professional paint job"),
        PaintOption("savile-silver", "Savile Silver",
                    "bright silver metallic car paint, polished silver automotive finish, professional paint job"),
        PaintOption("uyuni-white", "Uyuni White",
                    "pearl white car paint, bright white automotive finish, professional paint job"),
        PaintOption("gold-coast", "Gold Coast Silver",
                    "champagne gold metallic car paint, warm silver gold automotive finish, professional paint job"),
        PaintOption("makalu-gray", "Makalu Gray",
                    "medium gray blue metallic car paint, slate gray automotive finish, professional paint job"),
    ]
}


def _normalize(selection_id: Optional[str]) -> str:
    return (selection_id or "").strip()


def get_wheel(selection_id: Optional[str]) -> WheelOption:
    """
    Look up a wheel option by id (surrounding whitespace ignored).

    Raises:
        UnknownSelectionError: if the id is empty or not in the catalog
    """
    wheel_id = _normalize(selection_id)
    if wheel_id not in WHEEL_CATALOG:
        raise UnknownSelectionError(f"Unknown wheel ID: {wheel_id or '<empty>'}")
    return WHEEL_CATALOG[wheel_id]


def get_paint(selection_id: Optional[str]) -> PaintOption:
    paint_id = _normalize(selection_id)
    if paint_id not in PAINT_CATALOG:
        raise UnknownSelectionError(f"Unknown paint ID: {paint_id or '<empty>'}")
    return PAINT_CATALOG[paint_id]


def build_wheel_instruction(option: WheelOption) -> str:
    # Describe both images in plain language; the model does not understand "Image 1 / Image 2"
    return (
        "Replace the rims of the vehicle in the foreground with the rim from the attached reference photo. "
        f"The reference shows {option.description}. Make it seem natural. "
        "Don't replace or edit anything else in the original photo except for the rims on only "
        "the vehicle from the foreground."
    )


def build_wheel_inpaint_prompt(option: WheelOption) -> str:
    return WHEEL_INPAINT_PROMPTS[option.wheel_id]


def build_paint_instruction(option: PaintOption) -> str:
    return (
        f"Change the body paint color of the vehicle in the foreground to {option.description}. "
        "Make it seem natural. Don't replace or edit anything else in the original photo except for "
        "the body paint on only the vehicle from the foreground."
    )


def list_catalog() -> Dict[str, List[Dict[str, str]]]:
    """Catalog as plain dicts for the API."""
    return {
        "wheels": [
            {"id": w.wheel_id, "description": w.description, "referenceImage": w.reference_image}
            for w in WHEEL_CATALOG.values()
        ],
        "paints": [
            {"id": p.paint_id, "name": p.name, "description": p.description}
            for p in PAINT_CATALOG.values()
        ],
    }
