"""Instruction builders for analysis, restoration, eye color and video prompts.

Validates and assembles the free-text instructions sent to edit providers.
"""

from restora.services.exceptions import ValidationError

LANGUAGE_NAMES = {
    "en": "English",
    "es": "Spanish",
}

EYE_COLORS = ("brown", "blue", "green", "hazel", "gray", "amber")

MAX_INSTRUCTION_LENGTH = 4000

PERSPECTIVE_CORRECTION_INSTRUCTION = (
    "CRITICAL: Preserve ALL facial features, structures, and identities exactly - do not "
    "alter or distort any faces. Extract and isolate ONLY the photograph itself from the "
    "image, removing any background like tables, walls, hands, or frames. Correct the "
    "perspective to make it straight and aligned. Crop precisely to the photograph's actual "
    "edges, excluding any surrounding environment. Maintain all original photo content, "
    "colors, and especially facial integrity. Apply minimal transformation to avoid distortion."
)

REALISTIC_COLOR_GUIDANCE = (
    ". ADD REALISTIC COLOR: Not everything should be muted - real photos have VARIATION. "
    "Apply: 1) TRUE blacks for dark clothing (not gray), TRUE whites for white clothing "
    "(not cream). 2) Natural skin tones with individual variation - some pink, some tan, "
    "some pale. 3) Hair in realistic shades with natural highlights. 4) Let SOME colors be "
    "vibrant where appropriate while others stay muted. Think genuine 1950s Kodachrome - it "
    "had punchy reds and blues alongside muted tones. AVOID the uniform pastel 'colorized' look."
)


def language_name(code: str) -> str:
    """Human language name for a supported language code.

    Raises:
        ValidationError: If the language is not supported
    """
    try:
        return LANGUAGE_NAMES[code]
    except KeyError:
        supported = ", ".join(sorted(LANGUAGE_NAMES))
        raise ValidationError(f"Unsupported language '{code}'. Supported: {supported}") from None


def validate_eye_color(eye_color: str) -> str:
    """Normalize and validate an eye color from the fixed palette.

    Raises:
        ValidationError: If the color is not in the palette
    """
    normalized = eye_color.strip().lower()
    if normalized not in EYE_COLORS:
        raise ValidationError(
            f"Unsupported eye color '{eye_color}'. Choose one of: {', '.join(EYE_COLORS)}"
        )
    return normalized


def validate_instruction(instruction: str) -> str:
    """Validate an edit instruction.

    Raises:
        ValidationError: If the instruction is empty or too long
    """
    if not instruction or not instruction.strip():
        raise ValidationError("Instruction cannot be empty")
    if len(instruction) > MAX_INSTRUCTION_LENGTH:
        raise ValidationError(
            f"Instruction exceeds maximum length of {MAX_INSTRUCTION_LENGTH} characters "
            f"(got {len(instruction)})"
        )
    return instruction.strip()


def build_analysis_prompt(language: str, hint: str) -> str:
    current = language_name(language)
    return (
        "Analyze this old photograph. Your response must follow the provided JSON schema. "
        "First, determine if the photo contains children. Second, determine if this is a "
        "'photo of a photo' (physical photograph captured within another scene like on a "
        "table, wall, or in hands) that needs extraction and perspective correction. Third, "
        "count the exact number of people visible in the photograph. Fourth, determine if "
        "the image has eye color enhancement potential (single person + black & white/sepia/"
        "lacks color). Fifth, analyze the lighting carefully - identify the primary light "
        "direction, quality, type, and shadow patterns. Sixth, create a SHORT restoration "
        "prompt (under 50 words) that preserves the original lighting direction and shadow "
        "patterns and facial features exactly. Do NOT include perspective or geometry "
        "corrections in the restoration prompt. Seventh, generate a detailed, cinematic video "
        "prompt in ENGLISH: subtle real-time movements, no dialogue, ambient sound, static "
        f"camera; any minimal vocalization must be in {current}. Example prompt: '{hint}'. "
        f"Eighth, generate a short URL-safe suggested filename in {current} without extension."
    )


def build_restoration_instruction(
    base_instruction: str,
    *,
    is_black_and_white: bool = False,
    person_count: int | None = None,
    eye_color: str | None = None,
    has_eye_color_potential: bool = False,
) -> str:
    """Assemble the full restoration instruction from the analysis prompt and flags."""
    instruction = validate_instruction(base_instruction)
    if person_count is not None and person_count > 0:
        noun = "person" if person_count == 1 else "people"
        instruction += (
            f". The photo shows exactly {person_count} {noun}: keep exactly {person_count} "
            f"{noun}, do not add, remove or merge anyone"
        )
    if eye_color and has_eye_color_potential:
        color = validate_eye_color(eye_color)
        instruction += f". Give the irises a natural {color} color with realistic depth"
    if is_black_and_white:
        instruction += REALISTIC_COLOR_GUIDANCE
    return instruction


def build_eye_color_instruction(eye_color: str) -> str:
    """Instruction that swaps only the iris color of an already restored image."""
    color = validate_eye_color(eye_color)
    return (
        f"ONLY change the eye color to natural {color}. Keep EVERYTHING else exactly the "
        "same - face, expression, lighting, colors, clothing. Just make the irises a natural "
        f"{color} color with appropriate reflections and depth."
    )


def build_translation_prompt(text: str, target_language: str) -> str:
    target = language_name(target_language)
    return (
        f"Translate the following cinematic prompt to {target} for a user interface. Keep the "
        "tone cinematic and descriptive, and do not add any extra conversational text or "
        "quotation marks around your response. Just provide the direct translation:\n\n"
        f'"{text}"'
    )
