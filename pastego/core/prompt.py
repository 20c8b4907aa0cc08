"""Prompt assembly from selected clips and templates."""

from typing import Optional, Sequence

from pastego.models.schemas import ClipRecord, Template

MATERIALS_MARKER = "{{materials}}"
MATERIAL_SEPARATOR = "\n\n---\n\n"


def render_materials(items: Sequence[ClipRecord]) -> str:
    """Render items as ordinal-labeled sections, in the order given."""
    sections = [
        f"[Material {index}] ({item.clip_type.value})\n{item.content}"
        for index, item in enumerate(items, start=1)
    ]
    return MATERIAL_SEPARATOR.join(sections)


def assemble(
    items: Sequence[ClipRecord],
    template: Optional[Template] = None,
    extra_instruction: str = "",
) -> str:
    """Build the final prompt.

    With a template, the materials replace its marker (or are appended when the
    marker is missing) and a non-empty instruction is added as an additional
    requirement. Without one, the instruction leads and the materials follow
    under a reference heading.
    """
    materials = render_materials(items)
    instruction = (extra_instruction or "").strip()

    if template is not None:
        if MATERIALS_MARKER in template.prompt:
            prompt = template.prompt.replace(MATERIALS_MARKER, materials, 1)
        else:
            prompt = f"{template.prompt}\n\n{materials}"
        if instruction:
            prompt += f"\n\nAdditional requirements: {instruction}"
        return prompt

    if instruction:
        return f"{instruction}\n\nReference materials:\n\n{materials}"
    return materials
