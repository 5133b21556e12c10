import asyncio
from datetime import timedelta

import pytest

from whitelist_vote.core.capabilities import Role
from whitelist_vote.core.errors import InvalidStateError
from whitelist_vote.models import ApplicationStatus, Polarity
from whitelist_vote.services.sweeper import ExpirationSweeper

from tests.conftest import START, FrozenClock

DEADLINE = START + timedelta(days=1)


@pytest.fixture
def open_application(db_session, voting_engine, admin, actor_of):
    def _open(candidate, nickname):
        submitted = voting_engine.submit_application(
            db_session, actor_of(candidate), nickname, "let me in"
        )
        return voting_engine.start_voting(
            db_session, actor_of(admin), submitted.application.id
        ).application.id

    return _open


@pytest.fixture
def sweeper(voting_engine, session_factory):
    return ExpirationSweeper(
        voting_engine,
        session_factory,
        interval_seconds=0.1,
        clock=FrozenClock(DEADLINE + timedelta(minutes=1)),
    )


def test_sweep_expires_overdue_application_once(
    db_session, voting_engine, sweeper, open_application, candidate, notifier
):
    application_id = open_application(candidate, "Notch")

    early = sweeper.sweep_once(now=DEADLINE - timedelta(seconds=1))
    assert early.examined == 0

    report = sweeper.sweep_once(now=DEADLINE)
    assert report.resolved == {application_id: "expired"}
    assert report.failed == {}

    again = sweeper.sweep_once(now=DEADLINE + timedelta(hours=1))
    assert again.examined == 0
    assert again.resolved == {}

    stored = voting_engine.get_application_status(db_session, application_id)
    db_session.refresh(stored)
    assert ApplicationStatus(stored.status) is ApplicationStatus.EXPIRED
    assert notifier.kinds_for(candidate.id).count("application_expired") == 1


def test_sweep_settles_decisive_tally_instead_of_expiring(
    db_session, voting_engine, sweeper, open_application, candidate, admin, members, actor_of,
    whitelist,
):
    application_id = open_application(candidate, "Notch")
    voting_engine.update_settings(db_session, actor_of(admin), min_votes_required=10)
    for member in members[:3]:
        voting_engine.cast_vote(db_session, actor_of(member), application_id, Polarity.NEGATIVE)
    voting_engine.update_settings(db_session, actor_of(admin), min_votes_required=3)

    report = sweeper.sweep_once(now=DEADLINE)

    assert report.resolved == {application_id: "rejected"}
    assert whitelist.calls == []


def test_one_failing_application_does_not_block_the_rest(
    db_session, voting_engine, sweeper, open_application, make_user, mocker
):
    broken_id = open_application(make_user(Role.APPLICANT), "Broken")
    healthy_id = open_application(make_user(Role.APPLICANT), "Healthy")
    settle = voting_engine.settle_expired

    def flaky(db, application_id, *, now=None):
        if application_id == broken_id:
            raise InvalidStateError("corrupt row")
        return settle(db, application_id, now=now)

    mocker.patch.object(voting_engine, "settle_expired", side_effect=flaky)

    report = sweeper.sweep_once(now=DEADLINE)

    assert report.examined == 2
    assert report.failed == {broken_id: "invalid_state"}
    assert report.resolved == {healthy_id: "expired"}


def test_unexpected_errors_are_recorded_by_type(
    voting_engine, sweeper, open_application, candidate, mocker
):
    application_id = open_application(candidate, "Notch")
    mocker.patch.object(voting_engine, "settle_expired", side_effect=RuntimeError("boom"))

    report = sweeper.sweep_once(now=DEADLINE)

    assert report.failed == {application_id: "RuntimeError"}


def test_broken_notifier_does_not_mark_settled_application_failed(
    db_session, voting_engine, sweeper, open_application, candidate, notifier
):
    application_id = open_application(candidate, "Notch")
    notifier.error = ConnectionError("socket closed")

    report = sweeper.sweep_once(now=DEADLINE)

    assert report.resolved == {application_id: "expired"}
    assert report.failed == {}
    assert "application_expired" in notifier.kinds_for(candidate.id)


def test_already_settled_application_is_skipped(
    voting_engine, sweeper, open_application, candidate, mocker
):
    application_id = open_application(candidate, "Notch")
    mocker.patch.object(voting_engine, "settle_expired", return_value=None)

    report = sweeper.sweep_once(now=DEADLINE)

    assert report.skipped == [application_id]
    assert report.resolved == {}


@pytest.mark.asyncio
async def test_background_loop_sweeps_until_stopped(
    sweeper, open_application, candidate, notifier
):
    open_application(candidate, "Notch")

    await sweeper.start()
    for _ in range(100):
        if "application_expired" in notifier.kinds_for(candidate.id):
            break
        await asyncio.sleep(0.05)
    await sweeper.stop()

    assert notifier.kinds_for(candidate.id).count("application_expired") == 1
    assert sweeper._task is None
