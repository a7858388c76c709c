"""Visual style table shared by the script and image prompt builders."""

from __future__ import annotations

DEFAULT_STYLE_ID = "nano-banana"

STYLE_LIBRARY: dict[str, str] = {
    "arcane": (
        "Arcane animated series look, painterly steampunk lighting, vivid rim glow, "
        "expressive portraits, layered brush textures."
    ),
    "desaturated-toon": (
        "Muted atmospheric 2D toon, long expressive shadows, soft mist, refined "
        "silhouettes, understated palette."
    ),
    "digital-noir": (
        "Angular neo-noir graphic novel, hard-edged shading, geometric shapes, "
        "teal-green monochrome, cinematic contrast."
    ),
    "bold-graphic": (
        "Bold poster-like comic art, thick silhouettes, crisp graphic blocks, "
        "red-and-black high contrast, strong negative space."
    ),
    "muted-adventure": (
        "Soft cinematic adventure painting, wide depth, earthy palette, atmospheric "
        "haze, story-rich environmental cues."
    ),
    "whimsical-cartoon": (
        "Playful surreal animation style, exaggerated proportions, bouncing curves, "
        "candy colors, lively expressions."
    ),
    "late-night-action": (
        "Nighttime action anime, backlit silhouettes, sharp highlights, tense motion, "
        "neon reflections."
    ),
    DEFAULT_STYLE_ID: (
        "Nano Banana stylized anime realism, saturated neon palette, hyper detailed "
        "characters, precise contour lines, motion-friendly staging, dynamic lighting."
    ),
}


def resolve_style_id(style_id: str | None) -> str:
    """Map ``None``, ``"none"`` and unknown ids to the default style."""

    if isinstance(style_id, str):
        cleaned = style_id.strip()
        if cleaned and cleaned != "none" and cleaned in STYLE_LIBRARY:
            return cleaned
    return DEFAULT_STYLE_ID


def describe_style(style_id: str | None) -> str:
    return STYLE_LIBRARY[resolve_style_id(style_id)]
