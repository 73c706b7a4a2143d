"""Built-in purpose templates."""

from __future__ import annotations

from .models import PurposeTemplate

READ_TEMPLATES: tuple[PurposeTemplate, ...] = (
    PurposeTemplate(
        name="Research Paper",
        purposes=(
            ("Skim", "#FFADAD"),
            ("Methodology", "#FFD6A5"),
            ("Experiments", "#CAFFBF"),
            ("Discussion and findings", "#9BF6FF"),
        ),
    ),
    PurposeTemplate(
        name="Three pass method",
        purposes=(
            ("First Pass", "#A0C4FF"),
            ("Second Pass", "#BDB2FF"),
            ("Third Pass", "#FFC6FF"),
        ),
    ),
)


def get_template(name: str) -> PurposeTemplate:
    for template in READ_TEMPLATES:
        if template.name.lower() == name.lower():
            return template
    raise KeyError(f"Unknown template: {name}")


__all__ = ["READ_TEMPLATES", "get_template"]
