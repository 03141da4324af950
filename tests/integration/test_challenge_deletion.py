"""Integration tests for protected challenge deletion and returning submissions."""

from __future__ import annotations

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from portal.db.models import (
    Challenge,
    ChallengeComment,
    ChallengeCommentLike,
    ChallengeSubmission,
    PointsEntry,
)
from portal.gamification import challenge_service, points_service
from portal.gamification.evaluation import normalize_evaluation_config
from tests.conftest import auth_headers, make_challenge, make_user, stored_url

API = "/api/gamification"

ONE_FILE = {"file": {"fileRequirements": [{"id": "r1", "name": "Report", "points": 100, "acceptedTypes": ["pdf"]}], "maxFiles": 1}}


async def _count(db, model, *criteria) -> int:
    return await db.scalar(select(func.count()).select_from(model).where(*criteria))


async def _file_challenge(db, admin) -> Challenge:
    return await make_challenge(
        db,
        admin,
        title="A",
        points=100,
        evaluation_type="file",
        evaluation_config=normalize_evaluation_config("file", ONE_FILE),
    )


async def _submit_file(client: AsyncClient, challenge_id: int, user, name: str) -> dict:
    response = await client.post(
        f"{API}/challenges/{challenge_id}/submit",
        json={"submissionData": {"file": {"files": [
            {"requirementId": "r1", "name": name, "url": stored_url(challenge_id, user, name)},
        ]}}},
        headers=auth_headers(user),
    )
    assert response.status_code == 201
    return response.json()


async def _approve(client: AsyncClient, submission_id: int, admin) -> None:
    response = await client.put(
        f"{API}/submissions/{submission_id}/review", json={"status": "approved"}, headers=auth_headers(admin)
    )
    assert response.status_code == 200


class TestDeletionProtection:
    """Deleting a challenge with submissions needs explicit confirmation."""

    @pytest.mark.asyncio
    async def test_delete_without_submissions(self, client: AsyncClient, db_session, admin):
        challenge = await make_challenge(db_session, admin)
        response = await client.delete(f"{API}/challenges/{challenge.id}", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["challengeDeleted"] is True
        assert await _count(db_session, Challenge) == 0

    @pytest.mark.asyncio
    async def test_blocked_returns_confirmation_signal(self, client: AsyncClient, db_session, admin, alice):
        challenge = await make_challenge(db_session, admin, title="Marathon")
        await client.post(f"{API}/challenges/{challenge.id}/submit", json={}, headers=auth_headers(alice))

        count = await client.get(f"{API}/challenges/{challenge.id}/submission-count", headers=auth_headers(admin))
        assert count.json() == {"submissionCount": 1, "challengeTitle": "Marathon"}

        response = await client.delete(f"{API}/challenges/{challenge.id}", headers=auth_headers(admin))
        assert response.status_code == 409
        body = response.json()
        assert body["requiresConfirmation"] is True
        assert body["submissionCount"] == 1
        assert body["challengeTitle"] == "Marathon"
        assert await _count(db_session, Challenge) == 1
        assert await _count(db_session, ChallengeSubmission) == 1

    @pytest.mark.asyncio
    async def test_non_admin_cannot_delete(self, client: AsyncClient, db_session, admin, alice):
        challenge = await make_challenge(db_session, admin)
        response = await client.delete(f"{API}/challenges/{challenge.id}?forceDelete=true", headers=auth_headers(alice))
        assert response.status_code == 403


class TestForcedDeletion:
    """Forced deletion retracts points and removes everything attached to the challenge."""

    @pytest.mark.asyncio
    async def test_single_file_scenario(self, client: AsyncClient, db_session, storage, admin):
        """Submit, approve (+100), force delete: total back to 0 and nothing left."""
        user = await make_user(db_session, "U")
        challenge = await _file_challenge(db_session, admin)
        submission = await _submit_file(client, challenge.id, user, "report.pdf")
        assert submission["status"] == "pending"

        await _approve(client, submission["id"], admin)
        assert await points_service.total_for(db_session, user.id) == 100

        comment = await client.post(
            f"{API}/challenges/{challenge.id}/comments", json={"content": "Done!"}, headers=auth_headers(user)
        )
        await client.post(f"{API}/comments/{comment.json()['id']}/like", headers=auth_headers(admin))

        response = await client.delete(f"{API}/challenges/{challenge.id}?forceDelete=true", headers=auth_headers(admin))
        assert response.status_code == 200
        summary = response.json()
        assert summary["challengeDeleted"] is True
        assert summary["submissionsRemoved"] == 1
        assert summary["pointsRetracted"] == 1
        assert summary["commentsRemoved"] == 1
        assert summary["filesDeleted"] == 1

        assert await points_service.total_for(db_session, user.id) == 0
        assert await _count(db_session, ChallengeSubmission) == 0
        assert await _count(db_session, ChallengeComment) == 0
        assert await _count(db_session, ChallengeCommentLike) == 0
        assert await _count(db_session, Challenge) == 0
        assert storage.deleted == [stored_url(challenge.id, user, "report.pdf")]

    @pytest.mark.asyncio
    async def test_file_failure_does_not_abort(self, client: AsyncClient, db_session, storage, admin):
        """K submissions give K retractions even when one file deletion fails."""
        users = [await make_user(db_session, name) for name in ("Ann", "Ben", "Cid")]
        challenge = await _file_challenge(db_session, admin)
        for user in users:
            submission = await _submit_file(client, challenge.id, user, f"{user.name.lower()}.pdf")
            await _approve(client, submission["id"], admin)
        storage.fail_urls.add(stored_url(challenge.id, users[1], "ben.pdf"))

        response = await client.delete(f"{API}/challenges/{challenge.id}?forceDelete=true", headers=auth_headers(admin))

        assert response.status_code == 200
        summary = response.json()
        assert summary["submissionsRemoved"] == 3
        assert summary["pointsRetracted"] == 3
        assert summary["filesDeleted"] == 2
        assert summary["fileDeletionFailures"] == 1
        assert summary["message"] == "3 submissions deleted, 1 file deletion failed"
        assert await _count(db_session, PointsEntry) == 0
        assert await _count(db_session, ChallengeSubmission) == 0
        assert await _count(db_session, Challenge) == 0

    @pytest.mark.asyncio
    async def test_other_challenges_untouched(self, client: AsyncClient, db_session, admin, alice):
        """Retraction matches the challenge id, not the title."""
        doomed = await make_challenge(db_session, admin, title="Reading", points=10)
        kept = await make_challenge(db_session, admin, title="Reading Club", points=20)
        for challenge in (doomed, kept):
            submitted = await client.post(f"{API}/challenges/{challenge.id}/submit", json={}, headers=auth_headers(alice))
            await _approve(client, submitted.json()["id"], admin)
        await points_service.grant(db_session, alice.id, 5, "Reading bonus", admin.id)
        await db_session.commit()

        await client.delete(f"{API}/challenges/{doomed.id}?forceDelete=true", headers=auth_headers(admin))

        assert await points_service.total_for(db_session, alice.id) == 25
        assert await _count(db_session, ChallengeSubmission, ChallengeSubmission.challenge_id == kept.id) == 1

    @pytest.mark.asyncio
    async def test_database_failure_midway_rolls_back(
        self, client: AsyncClient, db_session, storage, admin, alice, monkeypatch
    ):
        """A failure after points were retracted leaves points, rows and files in place."""
        challenge = await _file_challenge(db_session, admin)
        submission = await _submit_file(client, challenge.id, alice, "report.pdf")
        await _approve(client, submission["id"], admin)
        await client.post(f"{API}/challenges/{challenge.id}/comments", json={"content": "Hi"}, headers=auth_headers(alice))

        async def failing_remove_comments(db, challenge_id):
            raise RuntimeError("comment cleanup failed")

        monkeypatch.setattr(challenge_service, "_remove_comments", failing_remove_comments)
        with pytest.raises(RuntimeError):
            await challenge_service.delete_challenge(db_session, storage, challenge.id, force=True)

        assert await _count(db_session, PointsEntry) == 1
        assert await points_service.total_for(db_session, alice.id) == 100
        assert await _count(db_session, ChallengeSubmission) == 1
        assert await _count(db_session, ChallengeComment) == 1
        assert await _count(db_session, Challenge) == 1
        assert storage.deleted == []

    @pytest.mark.asyncio
    async def test_files_of_other_users_are_not_deleted(
        self, client: AsyncClient, db_session, storage, admin, alice, bob
    ):
        """A stored submission pointing at someone else's upload never deletes that upload."""
        challenge = await _file_challenge(db_session, admin)
        bobs_file = stored_url(challenge.id, bob, "bob.pdf")
        db_session.add(
            ChallengeSubmission(
                challenge_id=challenge.id,
                user_id=alice.id,
                status="pending",
                submission_type="file",
                submission_data={"file": {"files": [
                    {"requirementId": "r1", "name": "bob.pdf", "url": bobs_file, "submissionType": "file"},
                ]}},
            )
        )
        await db_session.commit()

        response = await client.delete(f"{API}/challenges/{challenge.id}?forceDelete=true", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json()["filesDeleted"] == 0
        assert storage.deleted == []


class TestReturnSubmissions:
    """Returning submissions resets a challenge without deleting it."""

    @pytest.mark.asyncio
    async def test_return_keeps_challenge_and_allows_resubmission(self, client: AsyncClient, db_session, storage, admin, alice):
        challenge = await _file_challenge(db_session, admin)
        submission = await _submit_file(client, challenge.id, alice, "first.pdf")
        await _approve(client, submission["id"], admin)
        await client.post(f"{API}/challenges/{challenge.id}/comments", json={"content": "Hi"}, headers=auth_headers(alice))

        response = await client.post(f"{API}/challenges/{challenge.id}/return-submissions", headers=auth_headers(admin))

        assert response.status_code == 200
        summary = response.json()
        assert summary["challengeDeleted"] is False
        assert summary["submissionsRemoved"] == 1
        assert summary["message"] == "1 submission returned"
        assert await points_service.total_for(db_session, alice.id) == 0
        assert await _count(db_session, ChallengeSubmission) == 0
        assert await _count(db_session, Challenge) == 1
        assert await _count(db_session, ChallengeComment) == 1
        assert storage.deleted == [stored_url(challenge.id, alice, "first.pdf")]

        again = await _submit_file(client, challenge.id, alice, "second.pdf")
        assert again["attemptCount"] == 1

    @pytest.mark.asyncio
    async def test_return_without_submissions(self, client: AsyncClient, db_session, admin):
        challenge = await make_challenge(db_session, admin)
        response = await client.post(f"{API}/challenges/{challenge.id}/return-submissions", headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["submissionsRemoved"] == 0

    @pytest.mark.asyncio
    async def test_return_missing_challenge(self, client: AsyncClient, admin):
        response = await client.post(f"{API}/challenges/999/return-submissions", headers=auth_headers(admin))
        assert response.status_code == 404
