"""
Dispatch lifecycle and rollover tests against the service layer.
2025-06-15 is a Sunday, 2025-06-16 a Monday.
"""
import pytest
from sqlalchemy import func, select

from dispatch_api.models.dispatch import Dispatch, DispatchTask
from dispatch_api.models.note import Note
from dispatch_api.models.task import Task
from dispatch_api.services import dispatch_lifecycle as lifecycle
from dispatch_api.services.errors import (
    AlreadyFinalizedError,
    ConflictError,
    DispatchFinalizedError,
    InvalidStateError,
    NotFinalizedError,
    NotFoundError,
    ValidationError,
)
from dispatch_api.services.events import DispatchSummaryUpdated, EventBus, event_bus
from dispatch_api.services.journal import register_journal_handlers
from dispatch_api.services.rollover import link_tasks, roll_over_tasks


async def _link_count(db, dispatch_id, task_id=None):
    query = select(func.count()).select_from(DispatchTask).where(DispatchTask.dispatch_id == dispatch_id)
    if task_id is not None:
        query = query.where(DispatchTask.task_id == task_id)
    return (await db.execute(query)).scalar_one()


async def _linked_titles(db, dispatch_id):
    tasks = await lifecycle.list_linked_tasks(db, dispatch_id)
    return sorted(t.title for t in tasks)


# ===================== GET OR CREATE =====================


class TestGetOrCreate:

    async def test_creates_then_reuses(self, db_session, seed_data, make_template):
        await make_template("{{if:day=sun}}\n- [ ] Sunday chore\n{{endif}}")
        user_id = seed_data["user_id"]

        first = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        second = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")

        assert first.created and not second.created
        assert first.dispatch.id == second.dispatch.id
        assert first.template_task_count == 1
        assert second.template_task_count == 0
        assert not first.dispatch.finalized

        tasks = (await db_session.execute(select(Task).where(Task.title == "Sunday chore"))).scalars().all()
        assert len(tasks) == 1

    async def test_dates_are_per_user(self, db_session, seed_data):
        mine = await lifecycle.get_or_create_dispatch(db_session, seed_data["user_id"], "2025-06-15")
        theirs = await lifecycle.get_or_create_dispatch(db_session, seed_data["other_id"], "2025-06-15")
        assert mine.dispatch.id != theirs.dispatch.id

    async def test_rejects_bad_date_key(self, db_session, seed_data):
        with pytest.raises(ValidationError):
            await lifecycle.get_or_create_dispatch(db_session, seed_data["user_id"], "15/06/2025")
        with pytest.raises(ValidationError):
            await lifecycle.get_or_create_dispatch(db_session, seed_data["user_id"], "2025-02-30")

    async def test_lost_race_returns_winner(self, db_session, seed_data, make_template, monkeypatch):
        await make_template("- [ ] Template task")
        user_id = seed_data["user_id"]

        winner = Dispatch(user_id=user_id, date="2025-06-15")
        db_session.add(winner)
        await db_session.commit()
        winner_id = winner.id

        real_find = lifecycle.find_dispatch_for_date
        calls = {"n": 0}

        async def stale_find(db, uid, date_key):
            # First lookup happens "before" the winner committed
            calls["n"] += 1
            if calls["n"] == 1:
                return None
            return await real_find(db, uid, date_key)

        monkeypatch.setattr(lifecycle, "find_dispatch_for_date", stale_find)

        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")

        assert not access.created
        assert access.dispatch.id == winner_id
        count = (await db_session.execute(
            select(func.count()).select_from(Dispatch).where(Dispatch.user_id == user_id)
        )).scalar_one()
        assert count == 1
        assert (await db_session.execute(select(Task))).scalars().all() == []

    async def test_create_dispatch_conflicts_on_existing_date(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        await lifecycle.create_dispatch(db_session, user_id, "2025-06-15")
        with pytest.raises(ConflictError):
            await lifecycle.create_dispatch(db_session, user_id, "2025-06-15")


# ===================== SUMMARY =====================


class TestSummary:

    @pytest.fixture(autouse=True)
    def journal_handlers(self):
        register_journal_handlers(event_bus)

    async def test_update_summary_writes_journal_note(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")

        await lifecycle.update_summary(db_session, user_id, access.dispatch.id, "First draft")
        updated = await lifecycle.update_summary(db_session, user_id, access.dispatch.id, "Final words")

        assert updated.summary == "Final words"
        notes = (await db_session.execute(
            select(Note).where(Note.title == "Daily Dispatch - 2025-06-15")
        )).scalars().all()
        assert len(notes) == 1
        assert notes[0].content == "Final words"
        assert notes[0].date == "2025-06-15"

    async def test_finalized_dispatch_rejects_summary(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)

        with pytest.raises(DispatchFinalizedError):
            await lifecycle.update_summary(db_session, user_id, access.dispatch.id, "Too late")

        dispatch = await lifecycle.get_dispatch(db_session, user_id, access.dispatch.id)
        assert dispatch.summary is None

    async def test_summary_length_limit(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        with pytest.raises(ValidationError):
            await lifecycle.update_summary(db_session, user_id, access.dispatch.id, "x" * 10001)

    async def test_journal_failure_keeps_summary(self, db_session, seed_data, monkeypatch):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        dispatch_id = access.dispatch.id

        bus = EventBus()

        async def broken_handler(db, event):
            raise RuntimeError("notes store unavailable")

        bus.subscribe(DispatchSummaryUpdated, broken_handler)
        monkeypatch.setattr(lifecycle, "event_bus", bus)

        updated = await lifecycle.update_summary(db_session, user_id, dispatch_id, "Kept anyway")
        assert updated.summary == "Kept anyway"
        assert (await db_session.execute(select(Note))).scalars().all() == []


# ===================== COMPLETE / ROLLOVER =====================


class TestComplete:

    async def test_rolls_over_unfinished_tasks(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        dispatch_id = access.dispatch.id

        done = await make_task("Done task", status="done")
        open_task = await make_task("Open task", status="open")
        in_progress = await make_task("In progress", status="in_progress")
        await link_tasks(db_session, dispatch_id, [done.id, open_task.id, in_progress.id])
        await db_session.commit()

        result = await lifecycle.complete_dispatch(db_session, user_id, dispatch_id)

        assert result.dispatch.finalized
        assert result.rolled_over == 2
        next_dispatch = await lifecycle.get_dispatch(db_session, user_id, result.next_dispatch_id)
        assert next_dispatch.date == "2025-06-16"
        assert await _linked_titles(db_session, next_dispatch.id) == ["In progress", "Open task"]
        # source links and statuses are untouched
        assert await _link_count(db_session, dispatch_id) == 3
        statuses = {t.title: t.status for t in await lifecycle.list_linked_tasks(db_session, dispatch_id)}
        assert statuses == {"Done task": "done", "Open task": "open", "In progress": "in_progress"}

    async def test_nothing_unfinished_means_no_next_dispatch(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        task = await make_task("Done", status="done")
        await link_tasks(db_session, access.dispatch.id, [task.id])
        await db_session.commit()

        result = await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)

        assert result.rolled_over == 0
        assert result.next_dispatch_id is None
        assert await lifecycle.find_dispatch_for_date(db_session, user_id, "2025-06-16") is None

    async def test_second_complete_fails_without_duplicate_rollover(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        task = await make_task("Carry over")
        await link_tasks(db_session, access.dispatch.id, [task.id])
        await db_session.commit()

        result = await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)
        with pytest.raises(AlreadyFinalizedError):
            await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)

        assert await _link_count(db_session, result.next_dispatch_id) == 1

    async def test_rollover_reuses_existing_link(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        today = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        tomorrow = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-16")
        task = await make_task("Already there")
        await link_tasks(db_session, today.dispatch.id, [task.id])
        await link_tasks(db_session, tomorrow.dispatch.id, [task.id])
        await db_session.commit()

        result = await lifecycle.complete_dispatch(db_session, user_id, today.dispatch.id)

        assert result.next_dispatch_id == tomorrow.dispatch.id
        assert await _link_count(db_session, tomorrow.dispatch.id, task.id) == 1

    async def test_rollover_applies_template_to_new_day(self, db_session, seed_data, make_template, make_task):
        await make_template("{{if:day=mon}}\n- [ ] Monday kickoff >{{date:YYYY-MM-DD}}\n{{endif}}")
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        assert access.template_task_count == 0
        task = await make_task("Carry over")
        await link_tasks(db_session, access.dispatch.id, [task.id])
        await db_session.commit()

        result = await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)

        tasks = await lifecycle.list_linked_tasks(db_session, result.next_dispatch_id)
        assert sorted(t.title for t in tasks) == ["Carry over", "Monday kickoff"]
        kickoff = next(t for t in tasks if t.title == "Monday kickoff")
        assert kickoff.due_date == "2025-06-16"

    async def test_rollover_crosses_year_boundary(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-12-31")
        task = await make_task("New year task")
        await link_tasks(db_session, access.dispatch.id, [task.id])
        await db_session.commit()

        result = await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)
        next_dispatch = await lifecycle.get_dispatch(db_session, user_id, result.next_dispatch_id)
        assert next_dispatch.date == "2026-01-01"

    async def test_last_calendar_day_cannot_roll_over(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "9999-12-31")
        dispatch_id = access.dispatch.id
        task = await make_task("Forever pending")
        await link_tasks(db_session, dispatch_id, [task.id])
        await db_session.commit()

        with pytest.raises(ValidationError):
            await lifecycle.complete_dispatch(db_session, user_id, dispatch_id)

        dispatch = await lifecycle.get_dispatch(db_session, user_id, dispatch_id)
        assert not dispatch.finalized

    async def test_last_calendar_day_completes_without_unfinished_tasks(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "9999-12-31")

        result = await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)

        assert result.dispatch.finalized
        assert result.next_dispatch_id is None

    async def test_roll_over_tasks_is_idempotent(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        a = await make_task("A")
        b = await make_task("B")

        first = await roll_over_tasks(db_session, user_id, [a.id, b.id], "2025-06-16")
        await db_session.commit()
        second = await roll_over_tasks(db_session, user_id, [b.id, a.id, a.id], "2025-06-16")
        await db_session.commit()

        assert first.dispatch.id == second.dispatch.id
        assert first.linked == 2
        assert second.linked == 0 and second.already_linked == 2
        assert await _link_count(db_session, first.dispatch.id) == 2

    async def test_unknown_dispatch(self, db_session, seed_data):
        with pytest.raises(NotFoundError):
            await lifecycle.complete_dispatch(db_session, seed_data["user_id"], 9999)


# ===================== UNFINALIZE =====================


class TestUnfinalize:

    async def test_reports_next_dispatch_after_rollover(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        task = await make_task("Carry over")
        await link_tasks(db_session, access.dispatch.id, [task.id])
        await db_session.commit()
        await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)

        result = await lifecycle.unfinalize_dispatch(db_session, user_id, access.dispatch.id)

        assert not result.dispatch.finalized
        assert result.has_next_dispatch
        assert result.next_dispatch_date == "2025-06-16"

    async def test_reports_no_next_dispatch_without_rollover(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)

        result = await lifecycle.unfinalize_dispatch(db_session, user_id, access.dispatch.id)

        assert not result.has_next_dispatch
        assert result.next_dispatch_date is None

    async def test_last_calendar_day_has_no_next_dispatch(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "9999-12-31")
        await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)

        result = await lifecycle.unfinalize_dispatch(db_session, user_id, access.dispatch.id)

        assert not result.dispatch.finalized
        assert not result.has_next_dispatch
        assert result.next_dispatch_date is None

    async def test_open_dispatch_cannot_be_unfinalized(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        with pytest.raises(NotFinalizedError):
            await lifecycle.unfinalize_dispatch(db_session, user_id, access.dispatch.id)

    async def test_can_complete_again_after_unfinalize(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)
        await lifecycle.unfinalize_dispatch(db_session, user_id, access.dispatch.id)
        result = await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)
        assert result.dispatch.finalized

    def test_state_errors_share_a_base(self):
        assert issubclass(AlreadyFinalizedError, InvalidStateError)
        assert issubclass(NotFinalizedError, InvalidStateError)
        assert NotFinalizedError().status_code == 400


# ===================== LINKS / CALENDAR =====================


class TestLinksAndCalendar:

    async def test_link_rules(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        dispatch_id = access.dispatch.id
        mine = await make_task("Mine")
        theirs = await make_task("Theirs", user_id=seed_data["other_id"])

        await lifecycle.link_task(db_session, user_id, dispatch_id, mine.id)
        with pytest.raises(ConflictError):
            await lifecycle.link_task(db_session, user_id, dispatch_id, mine.id)
        with pytest.raises(NotFoundError):
            await lifecycle.link_task(db_session, user_id, dispatch_id, theirs.id)

        await lifecycle.unlink_task(db_session, user_id, dispatch_id, mine.id)
        with pytest.raises(NotFoundError):
            await lifecycle.unlink_task(db_session, user_id, dispatch_id, mine.id)

    async def test_finalized_dispatch_refuses_link_changes(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        task = await make_task("Late")
        await lifecycle.complete_dispatch(db_session, user_id, access.dispatch.id)
        with pytest.raises(DispatchFinalizedError):
            await lifecycle.link_task(db_session, user_id, access.dispatch.id, task.id)

    async def test_delete_keeps_tasks(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        access = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-15")
        dispatch_id = access.dispatch.id
        task = await make_task("Survivor")
        await lifecycle.link_task(db_session, user_id, dispatch_id, task.id)

        await lifecycle.delete_dispatch(db_session, user_id, dispatch_id)

        assert await _link_count(db_session, dispatch_id) == 0
        assert (await db_session.execute(select(Task).where(Task.id == task.id))).scalar_one()
        with pytest.raises(NotFoundError):
            await lifecycle.get_dispatch(db_session, user_id, dispatch_id)

    async def test_calendar_month(self, db_session, seed_data, make_task):
        user_id = seed_data["user_id"]
        first = await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-01")
        await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-30")
        await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-07-01")
        task = await make_task("Counted", status="done")
        await lifecycle.link_task(db_session, user_id, first.dispatch.id, task.id)
        await lifecycle.complete_dispatch(db_session, user_id, first.dispatch.id)

        dates = await lifecycle.calendar_month(db_session, user_id, 2025, 6)

        assert dates == {
            "2025-06-01": {"finalized": True, "task_count": 1},
            "2025-06-30": {"finalized": False, "task_count": 0},
        }

    async def test_list_page(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        for day in ("2025-06-03", "2025-06-01", "2025-06-02"):
            await lifecycle.get_or_create_dispatch(db_session, user_id, day)
        await lifecycle.get_or_create_dispatch(db_session, seed_data["other_id"], "2025-06-01")

        page = await lifecycle.list_dispatches_page(db_session, user_id, page=2, limit=2)

        assert [d.date for d in page.items] == ["2025-06-03"]
        assert (page.page, page.limit, page.total, page.total_pages) == (2, 2, 3, 2)

    async def test_list_page_clamps_arguments(self, db_session, seed_data):
        user_id = seed_data["user_id"]
        await lifecycle.get_or_create_dispatch(db_session, user_id, "2025-06-01")

        page = await lifecycle.list_dispatches_page(db_session, user_id, page=-3, limit=500)
        assert (page.page, page.limit, page.total) == (1, 100, 1)

        page = await lifecycle.list_dispatches_page(db_session, user_id, limit=0)
        assert page.limit == 20

    async def test_calendar_rejects_bad_month(self, db_session, seed_data):
        with pytest.raises(ValidationError):
            await lifecycle.calendar_month(db_session, seed_data["user_id"], 2025, 13)
