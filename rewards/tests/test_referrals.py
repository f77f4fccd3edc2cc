"""
Unit Tests for the Referral Engine

Tests cover:
1. Referral code format
2. Signup bonus and referral bonus
3. Unknown and empty referral codes
4. Code collision retry
5. Identity rollback when the profile insert fails
"""

import re
from uuid import uuid4

import pytest

from rewards import referrals
from rewards.errors import IdentityCreationFailed, ProfileInsertFailed, StoreUnavailable
from rewards.referrals import generate_referral_code, normalize_referral_code
from rewards.store import REFERRALS, USERS

from .conftest import PASSWORD


CODE_PATTERN = re.compile(r"^SG-([A-Z]{1,3}|USER)-(\d{4})$")


class TestReferralCodeFormat:
    """Tests for referral code generation."""

    def test_code_uses_first_three_letters(self):
        code = generate_referral_code("alice")
        assert code.startswith("SG-ALI-")
        assert CODE_PATTERN.match(code)

    def test_short_name_keeps_its_length(self):
        code = generate_referral_code("Al")
        assert code.startswith("SG-AL-")
        assert CODE_PATTERN.match(code)

    def test_missing_name_uses_user_prefix(self):
        assert generate_referral_code(None).startswith("SG-USER-")
        assert generate_referral_code("").startswith("SG-USER-")

    def test_suffix_in_range(self):
        for _ in range(200):
            suffix = int(CODE_PATTERN.match(generate_referral_code("Bob")).group(2))
            assert 1000 <= suffix <= 9999

    def test_letters_that_expand_when_uppercased(self):
        """Uppercasing happens before the three-letter cut."""
        assert generate_referral_code("ßob").startswith("SG-SSO-")
        assert generate_referral_code("ﬁona").startswith("SG-FIO-")
        assert CODE_PATTERN.match(generate_referral_code("ßob"))

    def test_custom_prefix(self):
        assert generate_referral_code("Bob", prefix="XX").startswith("XX-BOB-")

    def test_normalize(self):
        assert normalize_referral_code("  sg-bob-1234 ") == "SG-BOB-1234"
        assert normalize_referral_code("   ") is None
        assert normalize_referral_code(None) is None


class TestSignUp:
    """Tests for the signup flow."""

    def test_new_user_gets_signup_bonus(self, make_user):
        user = make_user(name="Alice")

        assert user.coins == 30
        assert user.referred_by is None
        assert user.referral_code.startswith("SG-ALI-")

    def test_identity_and_profile_share_id(self, service, auth, make_user):
        user = make_user()

        assert user.id in auth.identities
        assert auth.identities[user.id].attrs["name"] == "Alice"

    def test_valid_referral_code_pays_inviter_once(self, service, storage, make_user):
        inviter = make_user(name="Bob")

        invitee = make_user(name="Carol", referral_code=inviter.referral_code)

        assert invitee.coins == 30
        assert invitee.referred_by == inviter.referral_code
        assert service.get_profile(inviter.id).coins == 80

        referral_rows = storage.find(REFERRALS)
        assert len(referral_rows) == 1
        assert referral_rows[0]["inviter_id"] == inviter.id
        assert referral_rows[0]["invitee_id"] == invitee.id
        assert referral_rows[0]["bonus_coins"] == 50

    def test_lowercase_referral_code_is_accepted(self, service, make_user):
        inviter = make_user(name="Bob")

        make_user(name="Carol", referral_code=inviter.referral_code.lower())

        assert service.get_profile(inviter.id).coins == 80

    def test_unknown_referral_code_is_ignored(self, service, storage, make_user):
        inviter = make_user(name="Bob")

        invitee = make_user(name="Carol", referral_code="SG-NOPE-0000")

        assert invitee.coins == 30
        assert invitee.referred_by == "SG-NOPE-0000"
        assert storage.count(REFERRALS) == 0
        assert service.get_profile(inviter.id).coins == 30

    def test_empty_referral_code_skips_referral(self, storage, make_user):
        user = make_user(referral_code="")

        assert user.referred_by is None
        assert storage.count(REFERRALS) == 0

    def test_missing_name_gets_user_prefix(self, make_user):
        user = make_user(name=None)
        assert user.referral_code.startswith("SG-USER-")

    def test_duplicate_email_fails_without_side_effects(self, storage, make_user):
        make_user(email="dup@example.com")

        with pytest.raises(IdentityCreationFailed):
            make_user(email="dup@example.com")

        assert storage.count(USERS) == 1

    def test_bonus_amounts_follow_settings(self, storage, auth, settings):
        from rewards.service import RewardsService

        custom = RewardsService(
            storage=storage,
            auth=auth,
            settings=settings.model_copy(update={"signup_bonus": 10, "referral_bonus": 5}),
        )
        inviter = custom.sign_up("a@example.com", PASSWORD, "Ann")
        custom.sign_up("b@example.com", PASSWORD, "Ben", inviter.referral_code)

        assert inviter.coins == 10
        assert custom.get_profile(inviter.id).coins == 15


class TestReferralBonus:
    """Tests for the inviter bonus in isolation."""

    def test_second_bonus_for_same_pair_is_not_paid(self, service, make_user):
        inviter = make_user(name="Bob")
        invitee = make_user(name="Carol", referral_code=inviter.referral_code)

        result = service.referrals.process_referral_bonus(inviter.referral_code, invitee.id)

        assert result is None
        assert service.get_profile(inviter.id).coins == 80

    def test_self_referral_is_ignored(self, service, storage, make_user):
        user = make_user(name="Bob")

        result = service.referrals.process_referral_bonus(user.referral_code, user.id)

        assert result is None
        assert storage.count(REFERRALS) == 0
        assert service.get_profile(user.id).coins == 30

    def test_user_referrals_listed_for_inviter(self, service, make_user):
        inviter = make_user(name="Bob")
        first = make_user(name="Carol", referral_code=inviter.referral_code)
        second = make_user(name="Dave", referral_code=inviter.referral_code)

        referral_list = service.get_user_referrals(inviter.id)

        assert [r.invitee_id for r in referral_list] == [second.id, first.id]
        assert service.get_profile(inviter.id).coins == 130
        assert service.get_user_referrals(first.id) == []


    def test_failed_bonus_leaves_no_referral_row(self, service, storage, monkeypatch):
        """If the inviter credit fails, the referral row is removed so the bonus can be issued later."""
        inviter = service.sign_up("bob@example.com", PASSWORD, "Bob")

        def failing_increment(*args, **kwargs):
            raise StoreUnavailable("store offline")

        monkeypatch.setattr(storage, "increment_clamped", failing_increment)

        with pytest.raises(StoreUnavailable):
            service.sign_up("carol@example.com", PASSWORD, "Carol", inviter.referral_code)

        assert storage.count(REFERRALS) == 0
        assert service.get_profile(inviter.id).coins == 30

        monkeypatch.undo()
        invitee = storage.get_by_unique_field(USERS, "email", "carol@example.com")
        referral = service.referrals.process_referral_bonus(inviter.referral_code, invitee["id"])

        assert referral is not None
        assert storage.count(REFERRALS) == 1
        assert service.get_profile(inviter.id).coins == 80


class TestReferralCodeCollision:
    """A colliding code is regenerated instead of failing the signup."""

    def test_collision_is_retried(self, service, monkeypatch):
        codes = iter(["SG-ALI-1111", "SG-ALI-1111", "SG-ALI-2222"])
        monkeypatch.setattr(referrals, "generate_referral_code", lambda name, prefix="SG": next(codes))

        first = service.sign_up("one@example.com", PASSWORD, "Alice")
        second = service.sign_up("two@example.com", PASSWORD, "Alice")

        assert first.referral_code == "SG-ALI-1111"
        assert second.referral_code == "SG-ALI-2222"

    def test_exhausted_retries_roll_back_identity(self, service, auth, storage, monkeypatch):
        monkeypatch.setattr(referrals, "generate_referral_code", lambda name, prefix="SG": "SG-ALI-1111")
        service.sign_up("one@example.com", PASSWORD, "Alice")

        with pytest.raises(ProfileInsertFailed):
            service.sign_up("two@example.com", PASSWORD, "Alice")

        assert [i.email for i in auth.identities.values()] == ["one@example.com"]
        assert storage.count(USERS) == 1


class TestProfileInsertRollback:
    """When the profile insert fails the identity is deleted."""

    def test_store_failure_deletes_identity(self, service, auth, storage, monkeypatch):
        def failing_insert(kind, record):
            raise StoreUnavailable("store offline")

        monkeypatch.setattr(storage, "insert", failing_insert)

        with pytest.raises(ProfileInsertFailed) as exc_info:
            service.sign_up("alice@example.com", PASSWORD, "Alice")

        assert isinstance(exc_info.value.__cause__, StoreUnavailable)
        assert auth.identities == {}

    def test_failed_signup_can_be_retried(self, service, auth, storage, monkeypatch):
        original_insert = storage.insert
        calls = {"n": 0}

        def flaky_insert(kind, record):
            calls["n"] += 1
            if calls["n"] == 1:
                raise StoreUnavailable("store offline")
            return original_insert(kind, record)

        monkeypatch.setattr(storage, "insert", flaky_insert)

        with pytest.raises(ProfileInsertFailed):
            service.sign_up("alice@example.com", PASSWORD, "Alice")

        user = service.sign_up("alice@example.com", PASSWORD, "Alice")
        assert user.coins == 30
        assert list(auth.identities) == [user.id]

    def test_rollback_failure_still_reports_insert_failure(self, service, auth, storage, monkeypatch):
        def failing_insert(kind, record):
            raise StoreUnavailable("store offline")

        def failing_delete(identity_id):
            raise RuntimeError("auth offline")

        monkeypatch.setattr(storage, "insert", failing_insert)
        monkeypatch.setattr(auth, "delete_identity", failing_delete)

        with pytest.raises(ProfileInsertFailed):
            service.sign_up("alice@example.com", PASSWORD, "Alice")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
