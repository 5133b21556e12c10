from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from whitelist_vote.core.capabilities import Role, resolve_capability
from whitelist_vote.core.errors import (
    CooldownError,
    InvalidStateError,
    NotEligibleError,
    SelfRatingError,
)
from whitelist_vote.db.time import as_utc
from whitelist_vote.models import Polarity, ReputationRecord, User
from whitelist_vote.services import identity, reputation


def test_rating_weight_tiers():
    admin = User(external_id=1, role=Role.ADMIN, reputation_positive=0.0, reputation_negative=5.0)
    trusted = User(external_id=2, role=Role.MEMBER, reputation_positive=3.0, reputation_negative=1.0)
    plain = User(external_id=3, role=Role.MEMBER, reputation_positive=0.0, reputation_negative=0.0)
    disliked = User(external_id=4, role=Role.MEMBER, reputation_positive=1.0, reputation_negative=2.0)

    assert reputation.rating_weight(admin, 1.5) == 1.5
    assert reputation.rating_weight(trusted, 1.5) == pytest.approx(1.375)
    assert reputation.rating_weight(plain, 1.5) == 1.0
    assert reputation.rating_weight(disliked, 1.5) == 1.0


def test_admin_rating_carries_admin_weight(db_session, voting_engine, admin, members, actor_of):
    outcome = voting_engine.submit_rating(
        db_session, actor_of(admin), members[0].id, Polarity.POSITIVE, "helped build spawn"
    )

    assert outcome.rating.record.weight == 1.5
    assert outcome.rating.score.positive == 1.5
    assert outcome.rating.ejection is None
    db_session.refresh(admin)
    assert admin.ratings_given == 1


def test_self_rating_is_refused(db_session, voting_engine, members, actor_of):
    with pytest.raises(SelfRatingError):
        voting_engine.submit_rating(
            db_session, actor_of(members[0]), members[0].id, Polarity.POSITIVE
        )


def test_applicants_cannot_rate_or_be_rated(
    db_session, voting_engine, members, candidate, actor_of
):
    with pytest.raises(NotEligibleError):
        voting_engine.submit_rating(
            db_session, actor_of(candidate), members[0].id, Polarity.NEGATIVE
        )
    with pytest.raises(InvalidStateError):
        voting_engine.submit_rating(
            db_session, actor_of(members[0]), candidate.id, Polarity.NEGATIVE
        )


def test_cooldown_per_pair(db_session, voting_engine, members, actor_of, clock):
    rater = actor_of(members[0])
    voting_engine.submit_rating(db_session, rater, members[1].id, Polarity.POSITIVE)

    with pytest.raises(CooldownError):
        voting_engine.submit_rating(db_session, rater, members[1].id, Polarity.POSITIVE)

    # A different target is not affected by the pair cooldown.
    voting_engine.submit_rating(db_session, rater, members[2].id, Polarity.POSITIVE)

    clock.advance(minutes=61)
    voting_engine.submit_rating(db_session, rater, members[1].id, Polarity.POSITIVE)
    assert len(voting_engine.reputation_history(db_session, members[1].id)) == 2


def test_daily_rating_cap(db_session, voting_engine, admin, members, actor_of, clock):
    voting_engine.update_settings(
        db_session, actor_of(admin), rating_cooldown_minutes=0, max_daily_ratings=2
    )
    rater = actor_of(members[0])
    voting_engine.submit_rating(db_session, rater, members[1].id, Polarity.POSITIVE)
    voting_engine.submit_rating(db_session, rater, members[2].id, Polarity.POSITIVE)

    with pytest.raises(CooldownError, match="today's rating limit"):
        voting_engine.submit_rating(db_session, rater, members[3].id, Polarity.POSITIVE)

    clock.advance(days=1, minutes=1)
    voting_engine.submit_rating(db_session, rater, members[3].id, Polarity.POSITIVE)


def test_negative_ratings_eject_once(
    db_session, voting_engine, members, admin, make_user, actor_of, whitelist, notifier
):
    griefer = make_user(Role.MEMBER, nickname="Griefer")
    # Seven eligible voters with a 30% threshold: 2.1 weighted negatives eject.
    first = voting_engine.submit_rating(
        db_session, actor_of(members[0]), griefer.id, Polarity.NEGATIVE, "lava cast"
    )
    second = voting_engine.submit_rating(
        db_session, actor_of(members[1]), griefer.id, Polarity.NEGATIVE, "stole items"
    )
    assert not first.ejected
    assert not second.ejected

    third = voting_engine.submit_rating(
        db_session, actor_of(members[2]), griefer.id, Polarity.NEGATIVE
    )

    assert third.ejected
    db_session.refresh(griefer)
    assert griefer.role == Role.APPLICANT
    assert griefer.can_vote is False
    assert whitelist.calls == [("remove", "Griefer", None)]
    assert notifier.kinds_for(griefer.id) == ["user_ejected"]

    # Once demoted the user is no longer a rating target, so no second removal.
    with pytest.raises(InvalidStateError):
        voting_engine.submit_rating(
            db_session, actor_of(members[3]), griefer.id, Polarity.NEGATIVE
        )
    assert whitelist.calls == [("remove", "Griefer", None)]


def test_ejection_sync_failure_becomes_warning(
    db_session, voting_engine, members, make_user, actor_of, whitelist
):
    griefer = make_user(Role.MEMBER, nickname="Griefer")
    whitelist.fail = True
    voting_engine.submit_rating(db_session, actor_of(members[0]), griefer.id, Polarity.NEGATIVE)

    outcome = voting_engine.submit_rating(
        db_session, actor_of(members[1]), griefer.id, Polarity.NEGATIVE
    )

    assert outcome.ejected
    assert len(outcome.warnings) == 1
    assert "whitelist remove for Griefer failed" in outcome.warnings[0]
    db_session.refresh(griefer)
    assert griefer.role == Role.APPLICANT


def test_admins_are_never_ejected(db_session, voting_engine, members, admin, actor_of):
    for member in members:
        outcome = voting_engine.submit_rating(
            db_session, actor_of(member), admin.id, Polarity.NEGATIVE
        )
        assert not outcome.ejected

    db_session.refresh(admin)
    assert admin.role == Role.ADMIN
    assert admin.reputation_negative == 5.0
    assert voting_engine.check_ejection(db_session, admin.id) is False


def test_no_ejection_below_minimum_population(db_session, voting_engine, make_user, actor_of):
    rater = make_user(Role.MEMBER)
    target = make_user(Role.MEMBER)

    outcome = voting_engine.submit_rating(
        db_session, actor_of(rater), target.id, Polarity.NEGATIVE
    )

    assert outcome.rating.ejection is not None
    assert outcome.rating.ejection.check.eligible_voters == 2
    assert not outcome.ejected


def test_manual_enforcement_is_admin_only(db_session, voting_engine, members, actor_of):
    with pytest.raises(NotEligibleError):
        voting_engine.enforce_ejection(db_session, actor_of(members[0]), members[1].id)


def test_manual_enforcement_after_threshold_drop(
    db_session, voting_engine, admin, members, actor_of, whitelist
):
    target = members[4]
    voting_engine.submit_rating(db_session, actor_of(members[0]), target.id, Polarity.NEGATIVE)
    assert voting_engine.check_ejection(db_session, target.id) is False

    voting_engine.update_settings(db_session, actor_of(admin), negative_ratings_threshold=10)
    assert voting_engine.check_ejection(db_session, target.id) is True

    outcome = voting_engine.enforce_ejection(db_session, actor_of(admin), target.id)
    assert outcome.result.ejected
    again = voting_engine.enforce_ejection(db_session, actor_of(admin), target.id)
    assert not again.result.ejected
    # No nickname on record, so there was nothing to remove from the roster.
    assert whitelist.calls == []


def test_amnesty_resets_negative_baseline(
    db_session, voting_engine, admin, members, actor_of, clock, notifier
):
    target = members[4]
    voting_engine.submit_rating(db_session, actor_of(members[0]), target.id, Polarity.NEGATIVE)
    voting_engine.submit_rating(db_session, actor_of(members[1]), target.id, Polarity.POSITIVE)

    clock.advance(hours=1)
    score = voting_engine.request_amnesty(db_session, actor_of(admin), target.id)

    assert score.negative == 0.0
    assert score.positive == 1.0
    assert score.reset_at is not None
    assert "reputation_amnesty" in notifier.kinds_for(target.id)
    assert reputation.recompute_score(db_session, target.id).negative == 0.0

    clock.advance(hours=1)
    voting_engine.submit_rating(db_session, actor_of(members[2]), target.id, Polarity.NEGATIVE)

    recomputed = reputation.recompute_score(db_session, target.id)
    assert recomputed.negative == 1.0
    assert recomputed.positive == 1.0
    assert voting_engine.get_user_reputation(db_session, target.id).negative == 1.0
    # The pre-amnesty record is kept for history.
    history = voting_engine.reputation_history(db_session, target.id)
    assert len(history) == 3
    assert db_session.query(ReputationRecord).filter_by(target_id=target.id).count() == 3


def test_amnesty_requires_admin(db_session, voting_engine, members, actor_of):
    with pytest.raises(NotEligibleError):
        voting_engine.request_amnesty(db_session, actor_of(members[0]), members[1].id)


def test_bulk_amnesty_covers_users_with_negatives(
    db_session, voting_engine, admin, members, actor_of
):
    voting_engine.submit_rating(db_session, actor_of(members[0]), members[1].id, Polarity.NEGATIVE)
    voting_engine.submit_rating(db_session, actor_of(members[0]), members[2].id, Polarity.NEGATIVE)
    voting_engine.submit_rating(db_session, actor_of(members[0]), members[3].id, Polarity.POSITIVE)

    reset = voting_engine.amnesty_all(db_session, actor_of(admin))

    assert reset == [members[1].id, members[2].id]
    for member in members[1:3]:
        db_session.refresh(member)
        assert member.reputation_negative == 0.0
        assert member.reputation_reset_at is not None
    assert reputation.score(db_session, members[3].id).positive == 1.0


def test_history_is_newest_first(db_session, voting_engine, members, actor_of, clock):
    voting_engine.submit_rating(db_session, actor_of(members[0]), members[4].id, Polarity.POSITIVE)
    clock.advance(minutes=5)
    voting_engine.submit_rating(db_session, actor_of(members[1]), members[4].id, Polarity.NEGATIVE)

    history = reputation.history(db_session, members[4].id)

    assert [record.rater_id for record in history] == [members[1].id, members[0].id]
    assert as_utc(history[0].created_at) == clock.now


def test_rating_locks_rater_and_target_in_id_order(
    db_session, voting_engine, members, actor_of, mocker
):
    lower, higher = members[0], members[1]
    spy = mocker.spy(identity, "lock_user")

    voting_engine.submit_rating(db_session, actor_of(higher), lower.id, Polarity.POSITIVE)

    assert [call.args[1] for call in spy.call_args_list] == [lower.id, higher.id]
    db_session.refresh(higher)
    assert higher.ratings_given == 1


def test_cross_ratings_in_parallel_both_land(file_session_factory, threaded_engine):
    with file_session_factory() as db:
        alice = User(external_id=1, role=Role.MEMBER, can_vote=True)
        bob = User(external_id=2, role=Role.MEMBER, can_vote=True)
        db.add_all([alice, bob])
        db.commit()
        pairs = [(resolve_capability(alice), bob.id), (resolve_capability(bob), alice.id)]

    barrier = Barrier(len(pairs))

    def rate(pair):
        rater, target_id = pair
        barrier.wait()
        with file_session_factory() as db:
            outcome = threaded_engine.submit_rating(db, rater, target_id, Polarity.POSITIVE)
            return outcome.rating.record.id

    with ThreadPoolExecutor(max_workers=len(pairs)) as pool:
        record_ids = list(pool.map(rate, pairs))

    assert len(set(record_ids)) == 2
    with file_session_factory() as db:
        assert db.query(ReputationRecord).count() == 2
        for user in db.query(User).all():
            assert user.ratings_given == 1
            # Whoever rates second already carries positive reputation.
            assert user.reputation_positive in (1.0, 1.5)
