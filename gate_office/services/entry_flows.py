from __future__ import annotations

from dataclasses import dataclass

from gate_office.models import EntryType, StepKind


@dataclass(frozen=True)
class EntryFlowConfig:
    entry_type: EntryType
    route_prefix: str
    title: str
    steps: tuple[StepKind, ...]

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def step_kind(self, index: int) -> StepKind:
        if index < 1 or index > len(self.steps):
            raise IndexError(f'Step {index} is outside 1..{len(self.steps)} for {self.entry_type.value}')
        return self.steps[index - 1]

    def is_last(self, index: int) -> bool:
        return index == len(self.steps)

    def recorded_steps(self) -> tuple[StepKind, ...]:
        """Step kinds that own a persisted record (everything but the review)."""
        return tuple(kind for kind in self.steps if kind != StepKind.REVIEW)


_VEHICLE_STEPS = (StepKind.VEHICLE_DRIVER, StepKind.SECURITY_CHECK)

RAW_MATERIAL_FLOW = EntryFlowConfig(
    entry_type=EntryType.RAW_MATERIAL,
    route_prefix='/gate/raw-materials',
    title='Material Inward',
    steps=(
        *_VEHICLE_STEPS,
        StepKind.PO_RECEIPT,
        StepKind.WEIGHMENT,
        StepKind.QUALITY_CONTROL,
        StepKind.ATTACHMENTS,
        StepKind.REVIEW,
    ),
)

DAILY_NEED_FLOW = EntryFlowConfig(
    entry_type=EntryType.DAILY_NEED,
    route_prefix='/gate/daily-needs',
    title='Daily Needs Entry',
    steps=(*_VEHICLE_STEPS, StepKind.DAILY_NEED, StepKind.ATTACHMENTS, StepKind.REVIEW),
)

MAINTENANCE_FLOW = EntryFlowConfig(
    entry_type=EntryType.MAINTENANCE,
    route_prefix='/gate/maintenance',
    title='Maintenance Entry',
    steps=(*_VEHICLE_STEPS, StepKind.MAINTENANCE, StepKind.ATTACHMENTS, StepKind.REVIEW),
)

CONSTRUCTION_FLOW = EntryFlowConfig(
    entry_type=EntryType.CONSTRUCTION,
    route_prefix='/gate/construction',
    title='Construction Entry',
    steps=(*_VEHICLE_STEPS, StepKind.CONSTRUCTION, StepKind.ATTACHMENTS, StepKind.REVIEW),
)

PERSON_FLOW = EntryFlowConfig(
    entry_type=EntryType.PERSON,
    route_prefix='/gate/person-gate-in',
    title='Visitor/Labour',
    steps=(StepKind.PERSON_ENTRY, StepKind.ATTACHMENTS, StepKind.REVIEW),
)

FLOWS: dict[EntryType, EntryFlowConfig] = {
    flow.entry_type: flow
    for flow in (RAW_MATERIAL_FLOW, DAILY_NEED_FLOW, MAINTENANCE_FLOW, CONSTRUCTION_FLOW, PERSON_FLOW)
}


def get_flow(entry_type: EntryType | str) -> EntryFlowConfig:
    try:
        return FLOWS[EntryType(entry_type)]
    except ValueError as exc:
        raise KeyError(f'Unknown entry type: {entry_type}') from exc
