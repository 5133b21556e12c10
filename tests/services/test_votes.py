from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from threading import Barrier

import pytest

from whitelist_vote.core.capabilities import Role, resolve_capability
from whitelist_vote.core.errors import (
    AlreadyVotedError,
    ApplicationNotVotableError,
    EngineError,
    NotEligibleError,
)
from whitelist_vote.models import Application, ApplicationStatus, Polarity, User
from whitelist_vote.services import applications, votes

from tests.conftest import START


@pytest.fixture
def voting_application(db_session, candidate, admin):
    application = applications.create_application(db_session, candidate.id, "Notch", "hello")
    applications.start_voting(
        db_session, application.id, window=timedelta(days=1), actor_id=admin.id, now=START
    )
    db_session.commit()
    return application


def test_vote_increments_counter(db_session, voting_application, members):
    result = votes.cast_vote(
        db_session,
        voting_application.id,
        resolve_capability(members[0]),
        Polarity.POSITIVE,
        now=START,
    )
    db_session.commit()

    assert result.tally.positive == 1
    assert result.tally.negative == 0
    assert result.tally.eligible_voters == 6  # five members and the admin
    assert votes.count_votes(db_session, voting_application.id) == (1, 0)


def test_same_voter_cannot_vote_twice(db_session, voting_application, members):
    actor = resolve_capability(members[0])
    votes.cast_vote(db_session, voting_application.id, actor, Polarity.POSITIVE, now=START)
    db_session.commit()

    with pytest.raises(AlreadyVotedError):
        votes.cast_vote(db_session, voting_application.id, actor, Polarity.NEGATIVE, now=START)

    assert votes.tally(db_session, voting_application.id).total == 1


def test_candidate_cannot_vote_on_own_application(db_session, make_user, admin):
    member = make_user(Role.MEMBER)
    application = Application(candidate_id=member.id, nickname="Self", reason="x")
    application.status = ApplicationStatus.VOTING
    application.voting_deadline = START + timedelta(days=1)
    db_session.add(application)
    db_session.commit()

    with pytest.raises(NotEligibleError):
        votes.cast_vote(
            db_session, application.id, resolve_capability(member), Polarity.POSITIVE, now=START
        )


def test_applicants_cannot_vote(db_session, voting_application, make_user):
    outsider = make_user(Role.APPLICANT)
    with pytest.raises(NotEligibleError):
        votes.cast_vote(
            db_session,
            voting_application.id,
            resolve_capability(outsider),
            Polarity.POSITIVE,
            now=START,
        )


def test_member_without_voting_flag_cannot_vote(db_session, voting_application, make_user):
    muted = make_user(Role.MEMBER, can_vote=False)
    with pytest.raises(NotEligibleError):
        votes.cast_vote(
            db_session,
            voting_application.id,
            resolve_capability(muted),
            Polarity.POSITIVE,
            now=START,
        )


def test_vote_on_pending_application_is_refused(db_session, candidate, members):
    application = applications.create_application(db_session, candidate.id, "Herobrine", "x")
    db_session.commit()

    with pytest.raises(ApplicationNotVotableError):
        votes.cast_vote(
            db_session, application.id, resolve_capability(members[0]), Polarity.POSITIVE
        )


def test_vote_after_deadline_is_refused(db_session, voting_application, members):
    with pytest.raises(ApplicationNotVotableError):
        votes.cast_vote(
            db_session,
            voting_application.id,
            resolve_capability(members[0]),
            Polarity.POSITIVE,
            now=START + timedelta(days=1, seconds=1),
        )


@pytest.fixture
def race_setup(file_session_factory, threaded_engine):
    with file_session_factory() as db:
        users = [User(external_id=i, role=Role.MEMBER, can_vote=True) for i in range(1, 9)]
        candidate = User(external_id=100, role=Role.APPLICANT)
        db.add_all([*users, candidate])
        db.flush()
        application = applications.create_application(db, candidate.id, "Racer", "fast")
        applications.start_voting(
            db, application.id, window=timedelta(days=1), actor_id=None, now=START
        )
        # Keep the application open however many votes arrive.
        threaded_engine.settings_service.update(db, min_votes_required=50)
        db.commit()
        voters = [resolve_capability(user) for user in users]
        application_id = application.id
    return file_session_factory, threaded_engine, application_id, voters


def _vote_in_thread(factory, engine_under_test, application_id, actor, barrier):
    barrier.wait()
    with factory() as db:
        try:
            engine_under_test.cast_vote(db, actor, application_id, Polarity.POSITIVE)
        except EngineError as exc:
            return type(exc)
    return None


def test_concurrent_voters_do_not_lose_updates(race_setup):
    factory, engine_under_test, application_id, voters = race_setup
    barrier = Barrier(len(voters))

    with ThreadPoolExecutor(max_workers=len(voters)) as pool:
        results = list(
            pool.map(
                lambda actor: _vote_in_thread(
                    factory, engine_under_test, application_id, actor, barrier
                ),
                voters,
            )
        )

    assert results == [None] * len(voters)
    with factory() as db:
        assert votes.tally(db, application_id).positive == len(voters)
        assert votes.count_votes(db, application_id) == (len(voters), 0)


@pytest.mark.parametrize("taps", [2, 5])
def test_repeated_taps_count_once(race_setup, taps):
    factory, engine_under_test, application_id, voters = race_setup
    barrier = Barrier(taps)

    with ThreadPoolExecutor(max_workers=taps) as pool:
        results = list(
            pool.map(
                lambda actor: _vote_in_thread(
                    factory, engine_under_test, application_id, actor, barrier
                ),
                [voters[0]] * taps,
            )
        )

    assert results.count(None) == 1
    assert results.count(AlreadyVotedError) == taps - 1
    with factory() as db:
        assert votes.tally(db, application_id).positive == 1
        assert votes.count_votes(db, application_id) == (1, 0)
