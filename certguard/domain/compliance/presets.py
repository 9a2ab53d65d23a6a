from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from certguard.domain.compliance.activity import ActivityEntry, log_activity
from certguard.domain.compliance.db_models import Company, CompanyPreset, ComplianceCategory
from certguard.domain.compliance.schemas import ActivityType, PresetUpdateRequest
from certguard.domain.errors import CompanyNotFound, PresetDisabled, PresetNotFound, UnknownPreset
from certguard.infra.db import transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompliancePreset:
    key: str
    name: str
    category: ComplianceCategory
    is_other: bool = False


def _group(category: ComplianceCategory, entries: list[tuple[str, str]], other: tuple[str, str]) -> tuple:
    presets = [CompliancePreset(key, name, category) for key, name in entries]
    presets.append(CompliancePreset(other[0], other[1], category, is_other=True))
    return tuple(presets)


PRESET_CATALOGUE: dict[ComplianceCategory, tuple[CompliancePreset, ...]] = {
    ComplianceCategory.BASE: _group(
        ComplianceCategory.BASE,
        [
            ("safety_orientation", "Safety Orientation"),
            ("first_aid_cpr", "First Aid / CPR"),
            ("drug_alcohol", "Drug & Alcohol"),
            ("ppe_training", "PPE Training"),
            ("safety_meetings", "Safety Meetings"),
        ],
        ("other_general", "Other - General"),
    ),
    ComplianceCategory.RAILROAD: _group(
        ComplianceCategory.RAILROAD,
        [
            ("erailsafe_national", "eRailSafe - National"),
            ("erailsafe_bnsf", "eRailSafe - BNSF"),
            ("erailsafe_up", "eRailSafe - UP"),
            ("erailsafe_csx", "eRailSafe - CSX"),
            ("erailsafe_ns", "eRailSafe - Norfolk Southern"),
            ("erailsafe_cn", "eRailSafe - CN"),
            ("erailsafe_cp", "eRailSafe - CP"),
            ("erailsafe_cpkc", "eRailSafe - CPKC"),
            ("rwp", "RWP"),
            ("rwic", "RWIC"),
            ("lookout_flagging", "Lookout / Flagging"),
            ("on_track_safety", "On-Track Safety"),
            ("hi_rail", "Hi-Rail Qualification"),
            ("track_protection", "Track Protection"),
            ("railroad_safety_briefing", "Railroad Safety Briefing"),
            ("railroad_reporting", "Railroad Reporting"),
        ],
        ("other_railroad", "Other - Railroad"),
    ),
    ComplianceCategory.CONSTRUCTION: _group(
        ComplianceCategory.CONSTRUCTION,
        [
            ("osha_10", "OSHA 10"),
            ("osha_30", "OSHA 30"),
            ("equipment_operator", "Equipment Operator"),
            ("heavy_equipment", "Heavy Equipment"),
            ("confined_space", "Confined Space"),
            ("fall_protection", "Fall Protection"),
            ("crane_rigging", "Crane / Rigging"),
            ("construction_documentation", "Construction Documentation"),
        ],
        ("other_construction", "Other - Construction"),
    ),
    ComplianceCategory.ENVIRONMENTAL: _group(
        ComplianceCategory.ENVIRONMENTAL,
        [
            ("hazwoper", "HAZWOPER"),
            ("spill_response", "Spill Response"),
            ("hazardous_materials", "Hazardous Materials"),
            ("environmental_monitoring", "Environmental Monitoring"),
            ("sampling_testing", "Sampling & Testing"),
            ("waste_handling", "Waste Handling"),
            ("environmental_documentation", "Environmental Documentation"),
        ],
        ("other_environmental", "Other - Environmental"),
    ),
}

_BY_KEY: dict[str, CompliancePreset] = {
    preset.key: preset for presets in PRESET_CATALOGUE.values() for preset in presets
}
_CATEGORY_ORDER = {category.value: index for index, category in enumerate(PRESET_CATALOGUE)}


def resolve_preset(key: str) -> CompliancePreset:
    preset = _BY_KEY.get((key or "").strip().lower())
    if preset is None:
        raise UnknownPreset(detail=f"Unknown certification preset: {key}")
    return preset


async def ensure_company_presets(session: AsyncSession, company_id: str) -> list[CompanyPreset]:
    """Copy catalogue presets the company does not have yet and return all of its presets.

    Existing rows keep their owner edits; only missing keys are inserted.
    """
    async with transaction(session):
        if await session.get(Company, company_id) is None:
            raise CompanyNotFound()
        result = await session.execute(select(CompanyPreset).where(CompanyPreset.company_id == company_id))
        existing = {row.base_key: row for row in result.scalars()}
        for category, presets in PRESET_CATALOGUE.items():
            for index, preset in enumerate(presets):
                if preset.key in existing:
                    continue
                row = CompanyPreset(
                    company_id=company_id,
                    base_key=preset.key,
                    name=preset.name,
                    category=category.value,
                    is_other=preset.is_other,
                    enabled=True,
                    sort_order=index,
                )
                session.add(row)
                existing[preset.key] = row
        await session.flush()
    return sorted(
        existing.values(),
        key=lambda row: (_CATEGORY_ORDER[row.category], row.sort_order, row.name),
    )


async def list_company_presets(
    session: AsyncSession, company_id: str, category: ComplianceCategory | None = None
) -> list[CompanyPreset]:
    presets = await ensure_company_presets(session, company_id)
    if category is None:
        return presets
    return [row for row in presets if row.category == ComplianceCategory(category).value]


async def resolve_company_preset(session: AsyncSession, company_id: str, key: str) -> CompanyPreset:
    """Return the company's enabled preset for ``key``.

    "Other" presets stay selectable even if a stored row says otherwise.
    """
    base = resolve_preset(key)
    presets = await ensure_company_presets(session, company_id)
    row = next(row for row in presets if row.base_key == base.key)
    if not row.enabled and not row.is_other:
        raise PresetDisabled()
    return row


async def update_company_preset(
    session: AsyncSession,
    *,
    company_id: str,
    actor_id: str,
    preset_id: str,
    request: PresetUpdateRequest,
) -> CompanyPreset:
    await ensure_company_presets(session, company_id)
    async with transaction(session):
        row = await session.get(CompanyPreset, preset_id)
        if row is None or row.company_id != company_id:
            raise PresetNotFound()
        changes: dict[str, dict] = {}
        if request.name is not None and request.name != row.name:
            changes["name"] = {"from": row.name, "to": request.name}
            row.name = request.name
        if request.sort_order is not None and request.sort_order != row.sort_order:
            changes["sort_order"] = {"from": row.sort_order, "to": request.sort_order}
            row.sort_order = request.sort_order
        # "Other" presets are the fallback for custom names and cannot be switched off.
        enabled = True if row.is_other else request.enabled
        if enabled is not None and enabled != row.enabled:
            changes["enabled"] = {"from": row.enabled, "to": enabled}
            row.enabled = enabled
        if not changes:
            return row
        row.updated_by_id = actor_id
        await log_activity(
            session,
            ActivityEntry(
                company_id=company_id,
                actor_id=actor_id,
                type=ActivityType.PRESET_UPDATED,
                metadata={"preset_id": row.preset_id, "base_key": row.base_key, "changes": changes},
            ),
        )
        await session.flush()
    logger.info(
        "compliance_preset_updated",
        extra={"extra": {"company_id": company_id, "base_key": row.base_key, "fields": sorted(changes)}},
    )
    return row
