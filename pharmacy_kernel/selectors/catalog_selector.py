"""
Module: pharmacy_kernel.selectors.catalog_selector
Responsibility: Catalog lookups, including interaction checks across the
    medicines of one dispensing.
Architecture position: Kernel > Selectors.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import aliased

from pharmacy_kernel.models.medicine import Medicine, MedicineInteraction
from pharmacy_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class InteractionRow:
    interaction_id: UUID
    medicine_id_1: UUID
    medicine_name_1: str
    medicine_id_2: UUID
    medicine_name_2: str
    interaction_type: str
    description: str


_SEVERITY_ORDER = {"severe": 0, "moderate": 1, "minor": 2}


class CatalogSelector(BaseSelector):
    def check_interactions(self, medicine_ids: list[UUID]) -> list[InteractionRow]:
        """Known interactions among the given medicines, most severe first."""
        ids = set(medicine_ids)
        if len(ids) < 2:
            return []

        first = aliased(Medicine)
        second = aliased(Medicine)
        rows = self.session.execute(
            select(MedicineInteraction, first.name, second.name)
            .join(first, MedicineInteraction.medicine_id_1 == first.id)
            .join(second, MedicineInteraction.medicine_id_2 == second.id)
            .where(
                MedicineInteraction.medicine_id_1.in_(ids),
                MedicineInteraction.medicine_id_2.in_(ids),
            )
        ).all()
        result = [
            InteractionRow(
                interaction_id=interaction.id,
                medicine_id_1=interaction.medicine_id_1,
                medicine_name_1=name_1,
                medicine_id_2=interaction.medicine_id_2,
                medicine_name_2=name_2,
                interaction_type=interaction.interaction_type,
                description=interaction.description,
            )
            for interaction, name_1, name_2 in rows
        ]
        return sorted(
            result,
            key=lambda r: (_SEVERITY_ORDER.get(r.interaction_type, 3), r.medicine_name_1, r.medicine_name_2),
        )
