from typing import Optional

from .schemas import PromptStyle

# Round-robin pool used when a request carries no style.
FASHION_PROMPTS = [
    "Create a professional fashion photoshoot image. CRITICAL REQUIREMENTS: "
    "1) Keep the EXACT SAME person - preserve their face, gender, age, ethnicity, hair color, hair style, "
    "and all facial features identically. 2) Keep their EXACT SAME clothing - same outfit, same colors, "
    "same style, same accessories. 3) ONLY CHANGE: the pose and body position to create a professional "
    "model pose. Use professional studio lighting with soft key light and subtle shadows. Clean, elegant "
    "background. The person should be in a confident, professional modeling pose while wearing their "
    "original outfit.",

    "Transform into a professional model pose photoshoot. MUST PRESERVE: 1) The exact same person - "
    "identical face, gender, skin tone, hair, and all features. 2) The exact same outfit they are wearing - "
    "same clothing items, colors, patterns, and style. ONLY MODIFY: Change the pose to a dynamic fashion "
    "model stance. Use three-point studio lighting. Professional photography composition with proper depth "
    "of field. The same person in the same clothes, just in a different professional modeling pose.",

    "Create a high-end fashion photography shot. STRICT REQUIREMENTS: 1) Same person - do not change "
    "gender, face, age, ethnicity, or any physical features. 2) Same exact clothing - keep all garments, "
    "colors, and accessories identical to the original. 3) CHANGE ONLY THE POSE: Position them in an "
    "elegant, professional model pose. Implement cinematic studio lighting with soft diffused key light and "
    "gentle rim light. Neutral, upscale background. The identical person wearing their original outfit, "
    "posed professionally.",

    "Professional fashion editorial photograph. MANDATORY: 1) Preserve the person completely - same "
    "gender, same face, same hair, same everything about them. 2) Keep their clothing exactly as shown - "
    "same outfit, same colors, same style. 3) ONLY ALTER: The body pose and positioning for a professional "
    "fashion model look. Use professional beauty lighting setup. Sophisticated background with subtle "
    "depth. The same person in the same clothes, just repositioned in a confident modeling pose with "
    "proper posture.",
]

ASPECT_RATIO_DESCRIPTIONS = {
    "3:4": "portrait (taller than it is wide)",
    "1:1": "square",
    "4:3": "landscape (wider than it is tall)",
}

# Themes that replace the outfit instead of preserving it.
OUTFIT_CHANGING_THEMES = frozenset({"business", "millionaire", "vip_star", "red_carpet"})

THEME_INSTRUCTIONS = {
    "studio": (
        "**Scene & Lighting:** Place the model on a solid, seamless, neutral-colored studio background "
        "(e.g., light grey, off-white). Use bright, even, and soft studio lighting that clearly shows the "
        "clothing details without harsh shadows."
    ),
    "urban": (
        "**Scene & Lighting:** Place the model in a realistic urban environment such as a graffiti-covered "
        "alley, a modern city crosswalk at dusk, or brutalist architecture. Dynamic lighting, edgy and cool mood."
    ),
    "beach": (
        "**Scene & Lighting:** A sunny beach with white sand, turquoise water and distant palm trees. "
        "Bright, natural light with a warm, relaxed vacation vibe."
    ),
    "vintage": (
        "**Scene & Lighting:** The aesthetic of a 1970s film photograph: warm, slightly faded colors, subtle "
        "film grain, soft nostalgic light, a retro interior or sun-drenched outdoor scene."
    ),
    "business": (
        "**New Outfit & Scene:** Replace the outfit with sharp, modern, high-end business attire (a tailored "
        "suit, or a stylish pantsuit, blazer or business dress). Modern office interior with soft professional lighting."
    ),
    "millionaire": (
        "**New Outfit & Scene:** Dress the model in 'quiet luxury': designer styles, cashmere or silk, tasteful "
        "expensive accessories, no garish logos. An opulent penthouse, private jet or modern villa setting."
    ),
    "vip_star": (
        "**New Outfit & Scene:** Style the model as a VIP star at an exclusive high-fashion event in a "
        "glamorous designer outfit. A dimly lit exclusive lounge or a rooftop party at night with city lights."
    ),
    "red_carpet": (
        "**New Outfit & Scene:** A breathtaking formal gown or bespoke tuxedo fit for a major awards ceremony. "
        "A classic red carpet with the soft glow of paparazzi flashes in the distance."
    ),
}


def prompt_for_slot(slot: int, style: Optional[PromptStyle] = None) -> str:
    """Themed prompt when a style is given, otherwise the pool entry for this slot (round-robin)."""
    if style is not None:
        return build_prompt(style)
    return FASHION_PROMPTS[slot % len(FASHION_PROMPTS)]


def build_prompt(style: PromptStyle) -> str:
    """
    Builds a photorealistic, identity-preserving edit prompt for a pose, aspect
    ratio, theme and optional exclusions. Unknown themes fall back to studio and
    unknown aspect ratios to square.
    """
    aspect_description = ASPECT_RATIO_DESCRIPTIONS.get(style.aspect_ratio, "square")
    theme_instruction = THEME_INSTRUCTIONS.get(style.theme, THEME_INSTRUCTIONS["studio"])

    if style.theme in OUTFIT_CHANGING_THEMES:
        fidelity = (
            "**Identity Lock:** The model's face, identity, hair, and body type from the source image must be "
            "replicated with 100% accuracy. The clothing must be completely replaced by a new outfit according "
            "to the theme below. Do not copy the original clothing."
        )
    else:
        fidelity = (
            "**Identity & Clothing Lock:** The model's face, identity, hair, AND the exact clothing (color, "
            "texture and fit) from the source image must be replicated with 100% accuracy. Do not change the outfit."
        )

    sections = [
        "**Primary Objective:** Generate a single, ultra-realistic photograph indistinguishable from the work of "
        "a world-class portrait photographer. Perfectly preserve the facial identity of the person in the source image.",
        f"**1. Fidelity (CRITICAL):** {fidelity} Render skin with natural, high-resolution texture; no airbrushed "
        "or plastic look.",
        "**2. Photographic Emulation:** Emulate a professional full-frame camera with an 85mm f/1.4 prime lens. "
        "No digital art, illustration, 3D rendering or anatomical defects.",
        f"**3. Pose & Composition:** The model's new pose is: \"{style.pose}\". "
        f"The photo must have a {aspect_description} aspect ratio.",
        f"**4. Scene & Style (Theme: {style.theme}):** {theme_instruction}",
    ]
    if style.negative_prompt.strip():
        sections.append(
            f"**5. Exclusions (Negative Prompt):** Do NOT include any of the following: {style.negative_prompt.strip()}."
        )
    sections.append(
        "**Final Check:** The face must be an exact match to the source and the image must look like a genuine photograph."
    )
    return "\n\n".join(sections)
