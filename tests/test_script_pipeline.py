from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import select

from db.models import Payment
from production.catalog import create_assignment, list_shorts, set_rate
from production.context import CallerContext
from production.errors import Forbidden, NotFound, ValidationError
from production.script_pipeline import (
    VALIDATION_RULES,
    advance_stage,
    create_draft_item,
    get_draft,
    list_pipeline,
    update_description,
    update_draft,
)

ALL_RULES = list(range(len(VALIDATION_RULES)))


@pytest.fixture
def writer(make_user) -> CallerContext:
    user = make_user("writer")
    return CallerContext(user_id=user.id, roles=frozenset({"script_writer"}))


def test_checklist_has_nine_rules() -> None:
    assert len(VALIDATION_RULES) == 9


def test_create_draft_strips_fields(session, writer) -> None:
    short = create_draft_item(session, writer, title="  Deep sea gigantism  ", description="  ", idea=" squid ")
    assert short.title == "Deep sea gigantism"
    assert short.description is None
    assert short.idea == "squid"
    assert short.status == "idea"
    assert short.script_draft_stage == "first_draft"


def test_blank_title_is_rejected(session, writer) -> None:
    with pytest.raises(ValidationError) as exc_info:
        create_draft_item(session, writer, title="   ")
    assert exc_info.value.code == "title_required"


def test_clipper_cannot_use_pipeline(session, make_user) -> None:
    user = make_user("clipper")
    ctx = CallerContext(user_id=user.id, roles=frozenset({"clipper"}))
    with pytest.raises(Forbidden):
        create_draft_item(session, ctx, title="Nope")


def test_eight_of_nine_rules_does_not_advance(session, writer) -> None:
    short = create_draft_item(session, writer, title="Tardigrades")
    update_draft(session, writer, short.id, stage="first_draft", text="Tardigrades survive space.")

    with pytest.raises(ValidationError) as exc_info:
        advance_stage(session, writer, short.id, ALL_RULES[:8])
    assert exc_info.value.details["required_rules"] == list(VALIDATION_RULES)
    assert short.script_draft_stage == "first_draft"
    assert short.first_draft_completed_at is None


def test_full_pipeline_copies_text_verbatim(session, writer) -> None:
    text = "Line one.\n  Line two with  spacing.\n"
    short = create_draft_item(session, writer, title="Tardigrades")
    update_draft(session, writer, short.id, stage="first_draft", text=text)

    advance_stage(session, writer, short.id, ALL_RULES)
    assert short.script_draft_stage == "second_draft"
    assert short.script_second_draft == text
    assert short.first_draft_completed_at is not None

    revised = text + "Line three.\n"
    update_draft(session, writer, short.id, stage="second_draft", text=revised)
    advance_stage(session, writer, short.id, ALL_RULES)
    assert short.script_draft_stage == "final_draft"
    assert short.script_final_draft == revised
    assert short.script_first_draft == text

    advance_stage(session, writer, short.id, ALL_RULES)
    assert short.script_draft_stage is None
    assert short.status == "script"
    assert short.script_content == revised
    assert short.final_draft_completed_at is not None


def test_finished_draft_moves_from_pipeline_to_board(session, writer) -> None:
    short = create_draft_item(session, writer, title="Axolotls")
    assert [item.id for item in list_pipeline(session)] == [short.id]
    assert list_shorts(session) == []

    for _ in range(3):
        advance_stage(session, writer, short.id, ALL_RULES)

    assert list_pipeline(session) == []
    assert [item.id for item in list_shorts(session)] == [short.id]
    with pytest.raises(ValidationError) as exc_info:
        advance_stage(session, writer, short.id, ALL_RULES)
    assert exc_info.value.code == "not_in_script_pipeline"


def test_update_draft_requires_a_field(session, writer) -> None:
    short = create_draft_item(session, writer, title="Axolotls")
    with pytest.raises(ValidationError) as exc_info:
        update_draft(session, writer, short.id, stage="first_draft")
    assert exc_info.value.code == "no_fields_to_update"


def test_update_draft_never_changes_stage(session, writer) -> None:
    short = create_draft_item(session, writer, title="Axolotls")
    update_draft(session, writer, short.id, stage="final_draft", text="early final", notes="tighten hook")
    assert short.script_draft_stage == "first_draft"
    assert short.script_final_draft == "early final"
    assert short.script_pipeline_notes == "tighten hook"


def test_update_draft_rejects_unknown_stage(session, writer) -> None:
    short = create_draft_item(session, writer, title="Axolotls")
    with pytest.raises(ValidationError) as exc_info:
        update_draft(session, writer, short.id, stage="fourth_draft", text="x")
    assert exc_info.value.code == "invalid_stage"


def test_update_description_only_inside_pipeline(session, writer, admin, make_short) -> None:
    short = create_draft_item(session, writer, title="Axolotls")
    update_description(session, writer, short.id, "  regrowing limbs  ")
    assert short.description == "regrowing limbs"

    board_short = make_short()
    with pytest.raises(ValidationError):
        update_description(session, admin, board_short.id, "x")


def test_get_draft_includes_checklist(session, writer, make_short) -> None:
    short = create_draft_item(session, writer, title="Axolotls")
    found, rules = get_draft(session, short.id)
    assert found.id == short.id
    assert rules == VALIDATION_RULES

    with pytest.raises(NotFound):
        get_draft(session, make_short().id)


def test_list_pipeline_filters_by_stage(session, writer) -> None:
    first = create_draft_item(session, writer, title="One")
    second = create_draft_item(session, writer, title="Two")
    advance_stage(session, writer, second.id, ALL_RULES)

    assert [item.id for item in list_pipeline(session, "first_draft")] == [first.id]
    assert [item.id for item in list_pipeline(session, "second_draft")] == [second.id]


def _publish(session, ctx, short) -> None:
    for _ in range(3):
        advance_stage(session, ctx, short.id, ALL_RULES)


def test_publishing_final_draft_pays_the_assigned_writer(session, writer, admin) -> None:
    short = create_draft_item(session, writer, title="Pistol shrimp")
    assignment = create_assignment(
        session, admin, short_id=short.id, user_id=writer.user_id, role="script_writer"
    )
    set_rate(session, admin, user_id=writer.user_id, role="script_writer", rate="30.00")

    _publish(session, writer, short)

    assert assignment.completed_at is not None
    assert assignment.rate == Decimal("30.00")
    payments = session.execute(select(Payment)).scalars().all()
    assert len(payments) == 1
    assert payments[0].role == "script_writer"
    assert payments[0].source == "derived"
    assert payments[0].amount == Decimal("30.00")
    assert payments[0].assignment_id == assignment.id


def test_publishing_with_writer_but_no_rate_is_blocked(session, writer, admin) -> None:
    short = create_draft_item(session, writer, title="Pistol shrimp")
    create_assignment(session, admin, short_id=short.id, user_id=writer.user_id, role="script_writer")
    advance_stage(session, writer, short.id, ALL_RULES)
    advance_stage(session, writer, short.id, ALL_RULES)

    with pytest.raises(ValidationError) as exc_info:
        advance_stage(session, writer, short.id, ALL_RULES)
    assert exc_info.value.code == "rate_not_set"
    assert short.script_draft_stage == "final_draft"
    assert short.status == "idea"


def test_publishing_without_writer_assignment_creates_no_payment(session, writer) -> None:
    short = create_draft_item(session, writer, title="Pistol shrimp")
    _publish(session, writer, short)
    session.flush()
    assert session.execute(select(Payment)).scalars().all() == []
