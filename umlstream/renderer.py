"""PlantUML rendering for structural models."""

from __future__ import annotations

from typing import List

from .models import StructuralModel


def render_plantuml(model: StructuralModel) -> str:
    """Render *model* as PlantUML class-diagram text.

    Classes, methods, and relationships keep their input order so two
    near-identical models render to near-identical text.
    """
    lines: List[str] = ["@startuml"]

    for cls in model.classes:
        lines.append(f"class {cls.name} {{")
        for method in cls.methods:
            lines.append(f"  {method}")
        lines.append("}")

    for rel in model.relationships:
        lines.append(f"{rel.source} --> {rel.target}")

    lines.append("@enduml")
    return "\n".join(lines)
