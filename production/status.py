from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ShortStatus(StrEnum):
    IDEA = "idea"
    SCRIPT = "script"
    CLIPPING = "clipping"
    CLIPS = "clips"
    CLIP_CHANGES = "clip_changes"
    EDITING = "editing"
    EDITING_CHANGES = "editing_changes"
    COMPLETED = "completed"
    READY_TO_UPLOAD = "ready_to_upload"
    UPLOADED = "uploaded"


class Role(StrEnum):
    SCRIPT_WRITER = "script_writer"
    CLIPPER = "clipper"
    EDITOR = "editor"


class ArtifactType(StrEnum):
    SCRIPT = "script"
    AUDIO = "audio"
    CLIPS_ZIP = "clips_zip"
    FINAL_VIDEO = "final_video"


class DraftStage(StrEnum):
    FIRST_DRAFT = "first_draft"
    SECOND_DRAFT = "second_draft"
    FINAL_DRAFT = "final_draft"


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"


class PaymentSource(StrEnum):
    DERIVED = "derived"
    MANUAL = "manual"
    INCENTIVE = "incentive"


INCENTIVE_ROLE = "incentive"
PAYMENT_ROLES: tuple[str, ...] = (*(role.value for role in Role), INCENTIVE_ROLE)


@dataclass(frozen=True)
class StageRequirement:
    artifacts: tuple[ArtifactType, ...] = ()
    completed: tuple[str, ...] = ()


_NO_REQUIREMENT = StageRequirement()

_CLIPPING_GATE = StageRequirement(artifacts=(ArtifactType.SCRIPT, ArtifactType.AUDIO))
_EDITING_GATE = StageRequirement(
    artifacts=(ArtifactType.CLIPS_ZIP,),
    completed=("clips_completed_at",),
)
_UPLOAD_GATE = StageRequirement(
    artifacts=(ArtifactType.FINAL_VIDEO,),
    completed=("editing_completed_at",),
)

# Keyed by target status; a target missing here has no gate.
TRANSITION_REQUIREMENTS: dict[ShortStatus, StageRequirement] = {
    ShortStatus.CLIPPING: _CLIPPING_GATE,
    ShortStatus.CLIPS: _CLIPPING_GATE,
    ShortStatus.EDITING: _EDITING_GATE,
    ShortStatus.EDITING_CHANGES: _EDITING_GATE,
    ShortStatus.READY_TO_UPLOAD: _UPLOAD_GATE,
}

CHANGE_REQUEST_ENTRY_FIELDS: dict[ShortStatus, str] = {
    ShortStatus.CLIP_CHANGES: "entered_clip_changes_at",
    ShortStatus.EDITING_CHANGES: "entered_editing_changes_at",
}


@dataclass(frozen=True)
class RoleStage:
    working_statuses: frozenset[ShortStatus]
    artifact: ArtifactType
    completion_field: str


ROLE_STAGES: dict[Role, RoleStage] = {
    Role.CLIPPER: RoleStage(
        working_statuses=frozenset(
            {ShortStatus.CLIPPING, ShortStatus.CLIPS, ShortStatus.CLIP_CHANGES}
        ),
        artifact=ArtifactType.CLIPS_ZIP,
        completion_field="clips_completed_at",
    ),
    Role.EDITOR: RoleStage(
        working_statuses=frozenset({ShortStatus.EDITING, ShortStatus.EDITING_CHANGES}),
        artifact=ArtifactType.FINAL_VIDEO,
        completion_field="editing_completed_at",
    ),
}

NEXT_DRAFT_STAGE: dict[DraftStage, DraftStage | None] = {
    DraftStage.FIRST_DRAFT: DraftStage.SECOND_DRAFT,
    DraftStage.SECOND_DRAFT: DraftStage.FINAL_DRAFT,
    DraftStage.FINAL_DRAFT: None,
}


def requirement_for(status: ShortStatus) -> StageRequirement:
    return TRANSITION_REQUIREMENTS.get(status, _NO_REQUIREMENT)


def parse_status(value: str) -> ShortStatus | None:
    try:
        return ShortStatus(value)
    except ValueError:
        return None


def sql_in(column: str, values) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} in ({quoted})"
